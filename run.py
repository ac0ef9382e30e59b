#!/usr/bin/env python3
"""
Deal Flow Engine - Demo

Demonstrates the core functionality:
- Critical-date timelines (dynamic and legacy schedules)
- Commission and multi-broker take-home
- Dashboard summary
- Milestone reconciliation
- Extension decisions
- Board moves

Run with: python run.py
"""

from datetime import date, timedelta

from deal_flow.api import BrokerDirectory, DealStorage, create_sample_data
from deal_flow.core import (
    BOARD_COLUMNS,
    BoardColumn,
    ExtensionDecision,
    InvalidTransitionError,
    MoveCommand,
    ReconciliationSession,
    breakdown_for,
    close_deal,
    derive_timeline,
    format_currency,
    format_date,
    format_percent,
    group_by_column,
    member_breakdowns,
    pipeline_summary,
)
from deal_flow.logging_config import configure_logging


def setup(today: date) -> tuple[DealStorage, BrokerDirectory]:
    """In-memory store seeded with the sample brokers and deals."""
    deals = DealStorage()
    brokers = BrokerDirectory()
    create_sample_data(deals, brokers, today=today)
    return deals, brokers


def demo_timelines(deals: DealStorage, today: date):
    """Show each deal's critical dates."""
    print("\n" + "=" * 60)
    print("CRITICAL DATES")
    print("=" * 60)

    for deal in deals.get_all():
        print(f"\n{deal.deal_name} ({deal.status.value})")
        for cd in derive_timeline(deal, today):
            marker = "  " if not cd.is_past else "x "
            print(f"  {marker}{cd.label:20} {format_date(cd.date):14} [{cd.urgency.value:6}] {cd.days_away:+d}d")


def demo_commission(deals: DealStorage, brokers: BrokerDirectory):
    """Show the commission waterfall and each member's take-home."""
    print("\n" + "=" * 60)
    print("COMMISSION")
    print("=" * 60)

    for deal in deals.get_all():
        brokers.decorate(deal)
        b = breakdown_for(deal)
        print(f"\n{deal.deal_name}: {format_currency(deal.price)} @ {format_percent(deal.commission_rate)}")
        print(f"  Commission:      {format_currency(b.commission)}")
        print(f"  Broker split:    {format_currency(b.broker_split_amount)} ({format_percent(deal.broker_split)})")
        print(f"  House cut:       {format_currency(b.house_cut)}")
        print(f"  After house:     {format_currency(b.after_house)}")
        for line in b.deductions:
            print(f"  - {line.label}: {format_currency(line.amount)}")
        print(f"  Take-home:       {format_currency(b.take_home)}")

        for m in member_breakdowns(deal):
            print(f"    {m.broker_name or m.broker_id:14} {format_percent(m.member_split):>4}  {format_currency(m.take_home)}")


def demo_summary(deals: DealStorage, today: date):
    """Show the dashboard totals for one broker."""
    print("\n" + "=" * 60)
    print("DASHBOARD (BRK-ALEX)")
    print("=" * 60)

    summary = pipeline_summary(deals.for_broker("BRK-ALEX"), "BRK-ALEX", today)
    print(f"  Active deals:     {summary.active_deals}")
    print(f"  Pipeline value:   {format_currency(summary.pipeline_value)}")
    print(f"  Total commission: {format_currency(summary.total_commission)}")
    print(f"  My take-home:     {format_currency(summary.total_take_home)}")
    if summary.urgent:
        cd = summary.urgent.critical_date
        print(f"  Next up:          {cd.label} on {summary.urgent.deal_name} ({cd.days_away}d, {cd.urgency.value})")


def demo_reconcile(deals: DealStorage, today: date):
    """Run reconciliation today and again after the feasibility deadline."""
    print("\n" + "=" * 60)
    print("RECONCILIATION")
    print("=" * 60)

    session = ReconciliationSession()

    report = session.run(deals, today)
    print(f"\nPass {report.pass_number} (revision {report.revision}):")
    for a in report.advancements:
        print(f"  {a.deal.deal_name}: {a.from_status.value} → {a.new_status.value} ({a.milestone_label})")

    again = session.run(deals, today)
    print(f"  Re-run on the new revision ran: {again.ran}, advanced {len(again.advancements)}")
    print(f"  Re-run on an unchanged revision ran: {session.run(deals, today).ran}")

    # A new session (next sign-in) three days later
    later = today + timedelta(days=3)
    report = ReconciliationSession().run(deals, later)

    pending = report.pending_decision
    if pending:
        print(f"\nOn {format_date(later)}: '{pending.milestone_label}' reached on {pending.deal.deal_name}")
        print("  Was an extension filed? -> declined")
        _, outcome = deals.record_decision(
            pending.deal.id, pending.milestone_label, pending.milestone_date, ExtensionDecision.DECLINED
        )
        print(f"  Status: {outcome.change.from_status.value} → {outcome.change.to_status.value}")


def demo_board(deals: DealStorage, today: date):
    """Show the board and move a card."""
    print("\n" + "=" * 60)
    print("BOARD")
    print("=" * 60)

    def show():
        grouped = group_by_column(deals.get_all(), today)
        for column in BOARD_COLUMNS:
            names = ", ".join(d.deal_name for d in grouped[column.key]) or "-"
            print(f"  {column.label:14} {names}")

    show()

    deal = deals.get("DEAL-SAMPLE-001")
    command = MoveCommand(deal, BoardColumn.CLOSING)
    result = command.execute(deals)
    print(f"\nMoved '{deal.deal_name}' to closing: ok={result.ok}")
    show()

    print("\n--- Invalid Transition Test ---")
    closed = deals.get("DEAL-SAMPLE-001")
    close_deal(closed, today=today)
    deals.update(closed)
    try:
        MoveCommand(closed, BoardColumn.PRE_ESCROW)
    except InvalidTransitionError as e:
        print(f"  Caught expected error: {e}")


def main():
    configure_logging()
    today = date.today()
    deals, brokers = setup(today)

    demo_timelines(deals, today)
    demo_commission(deals, brokers)
    demo_summary(deals, today)
    demo_reconcile(deals, today)
    demo_board(deals, today)

    print("\n" + "=" * 60)
    print("DEMO COMPLETE")
    print("=" * 60)


if __name__ == "__main__":
    main()
