"""agtrace CLI — command-line interface for the traceability core.

Usage:
    python -m agtrace.cli status
    python -m agtrace.cli append-event --batch B1 --type created --user f1 --role farmer \
        --description "Batch registered"
    python -m agtrace.cli events --batch B1
    python -m agtrace.cli verify-event --event "B1#000001" --user p1 --role processor
    python -m agtrace.cli place-order --type processing --user p1 --role processor \
        --seller f1 --quantity 100 --amount 250.00 --batch B1
    python -m agtrace.cli check-invariants

State is file-backed under ``--data-dir`` (default: $AGTRACE_DATA_DIR or .agtrace).
"""

from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from agtrace.errors import ValidationError
from agtrace.identity import Actor, StaticIdentityProvider
from agtrace.models.order import DeliveryStatus, OrderStatus, OrderType
from agtrace.models.trace import ActorRole, EventType
from agtrace.policy.invariants import check_policy_invariants
from agtrace.service import ServiceResult, TraceabilityService
from agtrace.settings import Settings


def _settings(args: argparse.Namespace) -> Settings:
    settings = Settings.from_env(args.env_file)
    overrides: dict[str, Any] = {}
    if args.data_dir is not None:
        overrides["data_dir"] = args.data_dir
    if args.policy_dir is not None:
        overrides["policy_dir"] = args.policy_dir
    return dataclasses.replace(settings, **overrides) if overrides else settings


def _make_service(args: argparse.Namespace) -> TraceabilityService:
    """Create a TraceabilityService with durable persistence."""
    return TraceabilityService.from_settings(_settings(args))


def _identity(args: argparse.Namespace) -> StaticIdentityProvider:
    return StaticIdentityProvider(
        Actor.of(args.user, args.role, getattr(args, "name", "") or "")
    )


def _actor(args: argparse.Namespace) -> Actor:
    return _identity(args).resolve_actor()


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        raise ValidationError(f"Not an ISO-8601 timestamp: {value}") from None


def _report(result: ServiceResult) -> int:
    if result.success:
        print(json.dumps(result.data, indent=2, default=str))
        return 0
    print(f"Failed: {'; '.join(result.errors)}", file=sys.stderr)
    return 1


def cmd_status(args: argparse.Namespace) -> int:
    service = _make_service(args)
    print(json.dumps(service.status(), indent=2))
    return 0


def cmd_append_event(args: argparse.Namespace) -> int:
    service = _make_service(args)
    try:
        details = json.loads(args.details) if args.details else {}
    except json.JSONDecodeError as exc:
        raise ValidationError(f"--details must be a JSON object: {exc}") from None
    result = service.append_event(
        batch_id=args.batch,
        event_type=args.type,
        actor=_actor(args),
        payload={
            "description": args.description,
            "location": args.location or "",
            "details": details,
        },
    )
    return _report(result)


def cmd_events(args: argparse.Namespace) -> int:
    service = _make_service(args)
    events = service.get_batch_events(args.batch)
    print(json.dumps([e.to_dict() for e in events], indent=2))
    return 0


def cmd_summary(args: argparse.Namespace) -> int:
    service = _make_service(args)
    print(json.dumps(service.get_summary(args.batch).to_dict(), indent=2))
    return 0


def cmd_verify_event(args: argparse.Namespace) -> int:
    service = _make_service(args)
    return _report(service.verify_event(args.event, _actor(args)))


def cmd_place_order(args: argparse.Namespace) -> int:
    service = _make_service(args)
    result = service.place_order(
        _actor(args),
        args.type,
        args.seller,
        args.quantity,
        args.amount,
        batch_id=args.batch,
        product_name=args.product or "",
        unit=args.unit,
    )
    return _report(result)


def cmd_transition_order(args: argparse.Namespace) -> int:
    service = _make_service(args)
    result = service.transition_order(
        args.order,
        _actor(args),
        args.status,
        tracking_number=args.tracking,
        estimated_delivery=_parse_time(args.eta),
    )
    return _report(result)


def cmd_advance_delivery(args: argparse.Namespace) -> int:
    service = _make_service(args)
    result = service.advance_delivery(
        args.order,
        _actor(args),
        args.status,
        carrier=args.carrier,
        tracking_number=args.tracking,
        estimated_delivery=_parse_time(args.eta),
        notes=args.notes,
    )
    return _report(result)


def cmd_confirm_delivery(args: argparse.Namespace) -> int:
    service = _make_service(args)
    return _report(service.confirm_delivery(args.order, _actor(args)))


def cmd_submit_document(args: argparse.Namespace) -> int:
    service = _make_service(args)
    result = service.submit_document(
        args.user, args.role, args.document, reference=args.reference or "",
    )
    return _report(result)


def cmd_approve_verification(args: argparse.Namespace) -> int:
    service = _make_service(args)
    return _report(service.approve_verification(args.user, args.reviewer, level=args.level))


def cmd_reject_verification(args: argparse.Namespace) -> int:
    service = _make_service(args)
    return _report(service.reject_verification(args.user, args.reviewer, args.reason))


def cmd_mirror_sync(args: argparse.Namespace) -> int:
    """Queue every unmirrored event and order, then run the due jobs once."""
    service = _make_service(args)
    if service.dispatcher is None:
        print("Mirror not configured: set AGTRACE_MIRROR_RPC_URL and "
              "AGTRACE_MIRROR_PRIVATE_KEY", file=sys.stderr)
        return 1
    queued = service.backfill_mirror()
    mirrored = service.process_mirror()
    print(json.dumps({
        "queued": queued,
        "mirrored": mirrored,
        "pending": len(service.dispatcher.pending_jobs()),
    }, indent=2))
    return 0


def cmd_check_invariants(args: argparse.Namespace) -> int:
    """Run policy invariant checks."""
    service = _make_service(args)
    errors = check_policy_invariants(service.policy.raw)
    if errors:
        print("Invariant check failed:")
        for err in errors:
            print(f"- {err}")
        return 1
    print("Invariant check passed.")
    return 0


def _add_actor(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--user", required=True, help="Acting user ID")
    parser.add_argument(
        "--role", required=True, choices=[r.value for r in ActorRole], help="Acting role",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="agtrace",
        description="agtrace — supply-chain traceability CLI",
    )
    parser.add_argument("--data-dir", type=Path, default=None,
                        help="Data directory (default: $AGTRACE_DATA_DIR or .agtrace)")
    parser.add_argument("--policy-dir", type=Path, default=None,
                        help="Directory holding runtime_policy.json (default: packaged)")
    parser.add_argument("--env-file", type=Path, default=None,
                        help="Optional .env file to load")
    sub = parser.add_subparsers(dest="command")

    # status
    sub.add_parser("status", help="Show system status")

    # append-event
    p_app = sub.add_parser("append-event", help="Append an event to a batch")
    p_app.add_argument("--batch", required=True, help="Batch ID")
    p_app.add_argument("--type", required=True, choices=[t.value for t in EventType])
    _add_actor(p_app)
    p_app.add_argument("--name", help="Actor display name")
    p_app.add_argument("--description", required=True, help="What happened")
    p_app.add_argument("--location", help="Where it happened")
    p_app.add_argument("--details", help="Extra details as a JSON object")

    # events / summary
    p_events = sub.add_parser("events", help="List a batch's events")
    p_events.add_argument("--batch", required=True, help="Batch ID")
    p_sum = sub.add_parser("summary", help="Show a batch's timeline summary")
    p_sum.add_argument("--batch", required=True, help="Batch ID")

    # verify-event
    p_ver = sub.add_parser("verify-event", help="Verify another role's event")
    p_ver.add_argument("--event", required=True, help="Event ID")
    _add_actor(p_ver)

    # place-order
    p_place = sub.add_parser("place-order", help="Place a processing or distribution order")
    p_place.add_argument(
        "--type", required=True,
        choices=[t.value for t in OrderType if t != OrderType.CONSUMER],
    )
    _add_actor(p_place)
    p_place.add_argument("--seller", required=True, help="Seller user ID")
    p_place.add_argument("--quantity", required=True, help="Quantity (Decimal)")
    p_place.add_argument("--amount", required=True, help="Total amount (Decimal)")
    p_place.add_argument("--batch", help="Batch ID")
    p_place.add_argument("--product", help="Product name")
    p_place.add_argument("--unit", default="kg", help="Unit (default: kg)")

    # transition-order
    p_tr = sub.add_parser("transition-order", help="Move an order to a new status")
    p_tr.add_argument("--order", required=True, help="Order ID")
    p_tr.add_argument("--status", required=True, choices=[s.value for s in OrderStatus])
    _add_actor(p_tr)
    p_tr.add_argument("--tracking", help="Tracking number (required for shipped)")
    p_tr.add_argument("--eta", help="Estimated delivery, ISO-8601 (required for shipped)")

    # advance-delivery
    p_adv = sub.add_parser("advance-delivery", help="Advance a consumer order's delivery")
    p_adv.add_argument("--order", required=True, help="Order ID")
    p_adv.add_argument(
        "--status", required=True,
        choices=[s.value for s in DeliveryStatus if s != DeliveryStatus.DELIVERED],
    )
    _add_actor(p_adv)
    p_adv.add_argument("--carrier", help="Carrier name")
    p_adv.add_argument("--tracking", help="Tracking number")
    p_adv.add_argument("--eta", help="Estimated delivery, ISO-8601")
    p_adv.add_argument("--notes", help="Delivery notes")

    # confirm-delivery
    p_conf = sub.add_parser("confirm-delivery", help="Buyer confirms an order was delivered")
    p_conf.add_argument("--order", required=True, help="Order ID")
    _add_actor(p_conf)

    # KYC
    p_doc = sub.add_parser("submit-document", help="Submit a KYC document")
    _add_actor(p_doc)
    p_doc.add_argument("--document", required=True, help="Document type, e.g. identity")
    p_doc.add_argument("--reference", help="Reference to the stored upload")

    p_appr = sub.add_parser("approve-verification", help="Approve a pending KYC profile")
    p_appr.add_argument("--user", required=True, help="User under review")
    p_appr.add_argument("--reviewer", required=True, help="Reviewer ID")
    p_appr.add_argument("--level", choices=["basic", "standard", "premium"])

    p_rej = sub.add_parser("reject-verification", help="Reject a pending KYC profile")
    p_rej.add_argument("--user", required=True, help="User under review")
    p_rej.add_argument("--reviewer", required=True, help="Reviewer ID")
    p_rej.add_argument("--reason", required=True, help="Why the profile was rejected")

    # mirror-sync
    sub.add_parser("mirror-sync", help="Mirror every unmirrored event and order once")

    # check-invariants
    sub.add_parser("check-invariants", help="Run policy invariant checks")

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    logging.basicConfig(
        level=_settings(args).log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    commands = {
        "status": cmd_status,
        "append-event": cmd_append_event,
        "events": cmd_events,
        "summary": cmd_summary,
        "verify-event": cmd_verify_event,
        "place-order": cmd_place_order,
        "transition-order": cmd_transition_order,
        "advance-delivery": cmd_advance_delivery,
        "confirm-delivery": cmd_confirm_delivery,
        "submit-document": cmd_submit_document,
        "approve-verification": cmd_approve_verification,
        "reject-verification": cmd_reject_verification,
        "mirror-sync": cmd_mirror_sync,
        "check-invariants": cmd_check_invariants,
    }

    handler = commands.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 1

    try:
        return handler(args)
    except ValidationError as exc:
        print(f"Failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
