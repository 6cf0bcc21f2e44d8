import argparse
import json
import logging
import os
import sys
from typing import Any, Dict

from core.config import ConfigAccessor, load_yaml, sanitize_config
from core.evaluator import RuleEvaluator
from core.events import configure_logging
from core.intervals import gaps_by_kind, validate_rule_set
from core.models import RuleKind
from core.rules import RuleManager
from core.utils import snapshot_from_item
from storage.strikes import JsonStrikeStore, StrikeStoreError, split_strike_key


def _env(key: str, default: Any) -> Any:
    return os.environ.get(key, default)


def _config() -> Dict[str, Any]:
    cfg_path = _env('CONFIG_PATH', '/app/config.yaml')
    return sanitize_config(load_yaml(cfg_path))


def _strike_path() -> str:
    cfg = _config()
    general = cfg.get('general') if isinstance(cfg.get('general'), dict) else {}
    return str(general.get('strike_file_path') or _env('STRIKE_FILE_PATH', '/app/data/strikes.json'))


def cmd_list(args):
    store = JsonStrikeStore(_strike_path(), autosave=False)
    print(json.dumps(store.data, indent=2))


def cmd_clear(args):
    store = JsonStrikeStore(_strike_path(), autosave=False)
    if args.key:
        if args.key in store.data:
            store.remove(args.key)
            store.flush()
            print(f"Cleared {args.key}")
        else:
            print("Key not found")
    else:
        store.clear()
        print("Cleared all strikes")


def cmd_status(args):
    store = JsonStrikeStore(_strike_path(), autosave=False)
    total_entries = 0
    active_strikes = 0
    by_kind = {kind.value: 0 for kind in RuleKind}
    for k, v in store.data.items():
        total_entries += 1
        kind, _ = split_strike_key(k)
        if int(v.get('count') or 0) > 0:
            active_strikes += 1
            if kind is not None:
                by_kind[kind.value] += 1
    print(
        json.dumps(
            {
                "strike_file": store.path,
                "entries": total_entries,
                "active_strikes": active_strikes,
                "active_by_kind": by_kind,
            },
            indent=2,
        )
    )


def cmd_validate(args):
    acc = ConfigAccessor(_config())
    out = {}
    ok = True
    for kind, rules in zip(RuleKind, (acc.stall_rules(), acc.slow_rules())):
        result = validate_rule_set(rules)
        ok = ok and result.is_valid
        out[kind.value] = result.to_dict()
    print(json.dumps(out, indent=2))
    return 0 if ok else 1


def cmd_gaps(args):
    acc = ConfigAccessor(_config())
    stall, slow = acc.rules()
    gaps = gaps_by_kind(list(stall) + list(slow))
    print(json.dumps({k: [g.to_dict() for g in v] for k, v in gaps.items()}, indent=2))


def cmd_simulate(args):
    with open(args.item_json, 'r') as f:
        item = json.load(f)
    torrent = snapshot_from_item(item)
    acc = ConfigAccessor(_config())
    stall, slow = acc.rules()
    evaluator = RuleEvaluator(RuleManager(stall, slow))
    store = JsonStrikeStore(_strike_path())
    decision = evaluator.evaluate(RuleKind(args.kind), torrent, store)
    print(
        json.dumps(
            {
                "hash": torrent.hash,
                "kind": args.kind,
                "rule": decision.rule_name,
                "strikes": decision.strikes,
                "should_remove": decision.should_remove,
                "reason": decision.reason.value,
                "delete_from_client": decision.delete_from_client,
            },
            indent=2,
        )
    )


def main(argv=None):
    ap = argparse.ArgumentParser(description="Queue Rule Engine CLI")
    sub = ap.add_subparsers(dest='cmd')

    p_list = sub.add_parser('list', help='List strike records')
    p_list.set_defaults(func=cmd_list)

    p_clear = sub.add_parser('clear', help='Clear strikes (all or one key)')
    p_clear.add_argument('--key', help='Strike key to clear (e.g., stall:<hash>)')
    p_clear.set_defaults(func=cmd_clear)

    p_status = sub.add_parser('status', help='Show strike summary')
    p_status.set_defaults(func=cmd_status)

    p_validate = sub.add_parser('validate', help='Check configured rules for overlaps and invalid fields')
    p_validate.set_defaults(func=cmd_validate)

    p_gaps = sub.add_parser('gaps', help='Show completion ranges not covered by any rule')
    p_gaps.set_defaults(func=cmd_gaps)

    p_sim = sub.add_parser('simulate', help='Evaluate a torrent JSON against the configured rules')
    p_sim.add_argument('item_json', help='Path to torrent JSON file')
    p_sim.add_argument('--kind', choices=[k.value for k in RuleKind], default=RuleKind.STALL.value)
    p_sim.set_defaults(func=cmd_simulate)

    args = ap.parse_args(argv)
    if not hasattr(args, 'func'):
        ap.print_help()
        sys.exit(1)
    configure_logging(ConfigAccessor(_config()).debug_logging())
    try:
        rc = args.func(args)
    except StrikeStoreError as e:
        logging.error(str(e))
        sys.exit(2)
    sys.exit(rc or 0)


if __name__ == '__main__':
    main()
