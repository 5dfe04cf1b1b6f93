"""CLI entry point for the trade risk gateway."""

import argparse
import asyncio
import logging
from datetime import UTC, datetime, timedelta

from tradeguard.broker.cipher import FernetCipher
from tradeguard.config.loader import get_config_value, load_config, save_config, set_config_value
from tradeguard.config.schema import Backend, EngineConfig
from tradeguard.daemon import WorkerDaemon, daemon_status, stop_daemon
from tradeguard.errors import TradeGuardError
from tradeguard.models.common import new_id
from tradeguard.models.risk import LimitStatus, LimitType, LimitUnit
from tradeguard.models.system import BrokerCredential
from tradeguard.models.trading import (
    Exchange,
    OrderStatus,
    OrderType,
    ProductType,
    TransactionType,
    Validity,
)
from tradeguard.pipeline.orchestrator import Orchestrator
from tradeguard.storage import credential_repo
from tradeguard.storage.database import connect, run_migrations

DEFAULT_CONFIG = "ops/configs/default.yaml"
DEFAULT_DB = "data/tradeguard.db"


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="tradeguard",
        description="Risk-gated order execution gateway",
    )
    parser.add_argument("--config", default=DEFAULT_CONFIG, help="Config YAML path")
    parser.add_argument("--db", default=DEFAULT_DB, help="SQLite DB path")
    parser.add_argument("--user", default="operator", help="Acting user id")

    sub = parser.add_subparsers(dest="command")

    # daemon
    sub.add_parser("run", help="Run the queue workers in the foreground")
    sub.add_parser("stop", help="Stop a running worker daemon")
    sub.add_parser("daemon-status", help="Show worker daemon status")

    # kill-switch on / off / status
    ks_p = sub.add_parser("kill-switch", help="Halt or resume all trading")
    ks_p.add_argument("state", choices=["on", "off", "status"])
    ks_p.add_argument("--reason", default="Manual halt", help="Reason when turning on")

    # limits add / list / deactivate
    limits_p = sub.add_parser("limits", help="Risk limit operations")
    limits_sub = limits_p.add_subparsers(dest="limits_command")
    add_p = limits_sub.add_parser("add", help="Create a risk limit")
    add_p.add_argument("limit_type", choices=[t.value for t in LimitType])
    add_p.add_argument("value", type=float)
    add_p.add_argument("unit", choices=[u.value for u in LimitUnit])
    limits_sub.add_parser("list", help="List risk limits")
    deact_p = limits_sub.add_parser("deactivate", help="Deactivate a risk limit")
    deact_p.add_argument("limit_id")

    # submit
    submit_p = sub.add_parser("submit", help="Submit a trade intent")
    submit_p.add_argument("symbol")
    submit_p.add_argument("side", choices=[t.value for t in TransactionType])
    submit_p.add_argument("quantity", type=int)
    submit_p.add_argument("--exchange", default=Exchange.NSE.value,
                          choices=[e.value for e in Exchange])
    submit_p.add_argument("--order-type", default=OrderType.MARKET.value,
                          choices=[t.value for t in OrderType])
    submit_p.add_argument("--product", default=ProductType.MIS.value,
                          choices=[p.value for p in ProductType])
    submit_p.add_argument("--price", type=float)
    submit_p.add_argument("--trigger-price", type=float)
    submit_p.add_argument("--validity", default=Validity.DAY.value,
                          choices=[v.value for v in Validity])

    # cancel / orders
    cancel_p = sub.add_parser("cancel", help="Cancel an order")
    cancel_p.add_argument("order_id")
    orders_p = sub.add_parser("orders", help="List orders")
    orders_p.add_argument("--status", choices=[s.value for s in OrderStatus])
    orders_p.add_argument("--symbol")
    orders_p.add_argument("--limit", type=int, default=20)

    # credentials set
    cred_p = sub.add_parser("credentials", help="Broker credential operations")
    cred_sub = cred_p.add_subparsers(dest="credentials_command")
    cred_set_p = cred_sub.add_parser("set", help="Store a broker API key and access token")
    cred_set_p.add_argument("api_key")
    cred_set_p.add_argument("access_token")
    cred_set_p.add_argument("--expires-in-hours", type=float, default=24.0)

    # config show / config set
    config_p = sub.add_parser("config", help="Config operations")
    config_sub = config_p.add_subparsers(dest="config_command")
    config_sub.add_parser("show", help="Display current config")
    set_p = config_sub.add_parser("set", help="Set a config value")
    set_p.add_argument("keyvalue", help="key=value to set")

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 1

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = load_config(args.config)

    if args.command == "run":
        return _cmd_run(config, args)
    elif args.command == "stop":
        return stop_daemon()
    elif args.command == "daemon-status":
        return daemon_status()
    elif args.command == "config":
        return _cmd_config(config, args)
    elif args.command == "credentials":
        return _cmd_credentials(config, args)

    handlers = {
        "kill-switch": _cmd_kill_switch,
        "limits": _cmd_limits,
        "submit": _cmd_submit,
        "cancel": _cmd_cancel,
        "orders": _cmd_orders,
    }
    handler = handlers.get(args.command)
    if handler is None:
        parser.print_help()
        return 1
    try:
        return asyncio.run(_with_orchestrator(config, args, handler))
    except TradeGuardError as e:
        print(f"Error [{e.code}]: {e.message}")
        return 1


async def _with_orchestrator(config: EngineConfig, args, handler) -> int:
    orchestrator = Orchestrator.from_config(config, args.db)
    try:
        return await handler(orchestrator, args)
    finally:
        # Single-process mode: deliver queued work (audit included) before exit.
        if config.queue.backend == Backend.MEMORY:
            await orchestrator.run_until_idle()
        await orchestrator.stop()


def _cmd_run(config: EngineConfig, args) -> int:
    WorkerDaemon(config, db_path=args.db).start()
    return 0


async def _cmd_kill_switch(orchestrator: Orchestrator, args) -> int:
    ks = orchestrator.kill_switch
    if args.state == "status":
        flag = ks.status()
        print(f"Kill switch: {'ON' if flag.enabled else 'off'}")
        if flag.enabled:
            print(f"  Reason: {flag.reason}")
            print(f"  Triggered by: {flag.triggered_by} at {flag.triggered_at}")
            print(f"  Auto: {flag.metadata.get('auto_triggered', False)}")
        return 0
    if args.state == "on":
        result = await ks.enable(args.user, args.reason)
        if not result.changed:
            print("Kill switch already on")
            return 0
        print("Kill switch: on")
        if result.unwind is not None:
            u = result.unwind
            print(
                f"  Squared off {u.positions_squared_off} positions "
                f"({u.position_failures} failed), cancelled {u.orders_cancelled} orders "
                f"({u.order_failures} failed)"
            )
        return 0
    result = await ks.disable(args.user)
    print("Kill switch: off" if result.changed else "Kill switch already off")
    return 0


async def _cmd_limits(orchestrator: Orchestrator, args) -> int:
    limits = orchestrator.limits
    if args.limits_command == "add":
        limit = limits.create(
            args.user, LimitType(args.limit_type), args.value, LimitUnit(args.unit)
        )
        print(f"Created {limit.limit_type} limit {limit.id}: {limit.value:g} {limit.unit}")
        return 0
    elif args.limits_command == "list":
        rows = limits.list_limits(args.user)
        if not rows:
            print("No risk limits configured")
        for limit in rows:
            marker = "*" if limit.status == LimitStatus.ACTIVE else " "
            print(f"{marker} {limit.id}  {limit.limit_type:<14} {limit.value:g} {limit.unit}")
        return 0
    elif args.limits_command == "deactivate":
        limit = limits.deactivate(args.limit_id, args.user)
        print(f"Deactivated {limit.limit_type} limit {limit.id}")
        return 0
    print("Use: limits add | limits list | limits deactivate")
    return 1


async def _cmd_submit(orchestrator: Orchestrator, args) -> int:
    intent = await orchestrator.admit_intent(
        user_id=args.user,
        symbol=args.symbol,
        exchange=Exchange(args.exchange),
        transaction_type=TransactionType(args.side),
        order_type=OrderType(args.order_type),
        product_type=ProductType(args.product),
        quantity=args.quantity,
        price=args.price,
        trigger_price=args.trigger_price,
        validity=Validity(args.validity),
    )
    print(f"Trade intent {intent.id} queued for risk check")
    return 0


async def _cmd_cancel(orchestrator: Orchestrator, args) -> int:
    order = await orchestrator.execution.cancel_order(args.order_id, args.user)
    print(f"Order {order.id} cancelled")
    return 0


async def _cmd_orders(orchestrator: Orchestrator, args) -> int:
    orders = orchestrator.execution.list_orders(
        args.user,
        status=OrderStatus(args.status) if args.status else None,
        symbol=args.symbol.upper() if args.symbol else None,
        limit=args.limit,
    )
    if not orders:
        print("No orders")
    for o in orders:
        fill = f"{o.filled_quantity}/{o.quantity}"
        avg = f" @ {o.average_price:.2f}" if o.average_price else ""
        print(
            f"  {o.id}  {o.status:<9} {o.transaction_type} {o.exchange}:{o.symbol} "
            f"{fill}{avg}  broker={o.broker_order_id or '-'}"
        )
    return 0


def _cmd_credentials(config: EngineConfig, args) -> int:
    if args.credentials_command != "set":
        print("Use: credentials set API_KEY ACCESS_TOKEN")
        return 1
    try:
        cipher = FernetCipher.from_env(config.broker.encryption_key_env)
    except TradeGuardError as e:
        print(f"Error: {e.message}")
        return 1
    conn = connect(args.db)
    run_migrations(conn)
    expires_at = datetime.now(UTC) + timedelta(hours=args.expires_in_hours)
    credential_repo.save_credential(
        conn,
        BrokerCredential(
            id=new_id(),
            user_id=args.user,
            api_key=cipher.encrypt(args.api_key),
            access_token=cipher.encrypt(args.access_token),
            expires_at=expires_at.isoformat(),
        ),
    )
    print(f"Broker credential stored for {args.user} (expires {expires_at:%Y-%m-%d %H:%M} UTC)")
    conn.close()
    return 0


def _cmd_config(config: EngineConfig, args) -> int:
    if args.config_command == "show":
        print(config.model_dump_json(indent=2))
        return 0
    elif args.config_command == "set":
        kv = args.keyvalue
        if "=" not in kv:
            print("Error: use key=value format")
            return 1
        key, value = kv.split("=", 1)
        try:
            new_config = set_config_value(config, key.strip(), value.strip())
        except Exception as e:
            print(f"Error: {e}")
            return 1
        save_config(new_config, args.config)
        print(f"Set {key} = {get_config_value(new_config, key.strip())}")
        return 0
    else:
        print("Use: config show | config set key=value")
        return 1
