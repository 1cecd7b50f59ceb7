# MIT License
# Copyright (c) 2025 Hashborn

import argparse
import json
import os
import sys
import requests

DEFAULT_NODE = "http://localhost:8000"

def get_node_url(args):
    return args.node or os.environ.get("STAKEYIELD_NODE", DEFAULT_NODE)

def _get(args, path: str):
    url = get_node_url(args)
    try:
        resp = requests.get(f"{url}{path}", timeout=10)
    except requests.RequestException as e:
        print(f"Error: cannot reach node at {url}: {e}")
        sys.exit(1)
    if resp.status_code != 200:
        print(f"Error: {resp.text}")
        sys.exit(1)
    return resp.json()

def _post(args, path: str, body: dict):
    url = get_node_url(args)
    try:
        resp = requests.post(f"{url}{path}", json=body, timeout=10)
    except requests.RequestException as e:
        print(f"Error: cannot reach node at {url}: {e}")
        sys.exit(1)
    if resp.status_code != 200:
        detail = resp.json().get("detail", resp.text)
        if isinstance(detail, dict):
            print(f"Rejected ({detail.get('error')}): {detail.get('reason')}")
        else:
            print(f"Error: {detail}")
        sys.exit(1)
    return resp.json()

# --- Query Commands ---
def cmd_query_epoch(args):
    data = _get(args, "/epoch")
    print(f"Current epoch: {data['epoch']}")

def cmd_query_delegator(args):
    print(json.dumps(_get(args, f"/delegator/{args.address}"), indent=2))

def cmd_query_provider(args):
    print(json.dumps(_get(args, f"/provider/{args.address}"), indent=2))

def cmd_query_stake_state(args):
    data = _get(args, f"/provider/{args.address}/stake-state")
    print(f"Own yield:         {data['own_yield']}")
    print(f"Delegation reward: {data['delegation_reward']}")
    print(f"Bonus reward:      {data['bonus_reward']}")

def cmd_query_estimate(args):
    if args.kind == "yield":
        data = _get(args, f"/estimate/yield/{args.address}")
        print(f"Estimated yield: {data['yield']}")
    elif args.kind == "provider":
        data = _get(args, f"/estimate/provider/{args.address}")
        print(f"Estimated provider yield: {data['yield']}")
    else:
        data = _get(args, f"/estimate/accumulated/{args.address}")
        print(f"Accumulated: {data['accumulated']} (staked {data['staked']})")

def cmd_query_delegation(args):
    data = _get(args, f"/delegation/{args.provider}/{args.epoch}")
    print(f"Total delegated to {args.provider} at epoch {args.epoch}: {data['total']}")

def cmd_query_operations(args):
    path = f"/operations?limit={args.limit}"
    if args.caller:
        path += f"&caller={args.caller}"
    data = _get(args, path)
    print(f"{'ID':<6} {'Epoch':<6} {'Operation':<34} {'Caller':<20}")
    print("-" * 70)
    for op in data["operations"]:
        print(f"{op['id']:<6} {op['epoch']:<6} {op['op']:<34} {op['caller']:<20}")

# --- Tx Commands ---
def cmd_tx(args):
    body = {"caller": args.caller}
    for key in ("provider", "address", "amount", "epoch", "lock_duration"):
        value = getattr(args, key, None)
        if value is not None:
            body[key] = value
    data = _post(args, f"/tx/{args.op}", body)
    print(f"{data['op']}: {data['status']}")
    if data.get("result") is not None:
        print(json.dumps(data["result"], indent=2))

TX_COMMANDS = {
    "delegate": ("DELEGATE", ["provider"]),
    "undelegate": ("UNDELEGATE", []),
    "claim-yield": ("CLAIM_YIELD", ["--address"]),
    "sync-withdraw": ("SYNC_WITHDRAW_REQUEST", []),
    "reset": ("RESET_ACCOUNT", []),
    "stake-provider": ("STAKE_PROVIDER", ["amount", "--lock-duration"]),
    "withdraw-provider": ("WITHDRAW_PROVIDER", ["--address"]),
    "execute-withdraw": ("EXECUTE_PROVIDER_WITHDRAW", []),
    "claim-provider-yield": ("CLAIM_PROVIDER_YIELD", []),
    "claim-delegation-reward": ("CLAIM_PROVIDER_DELEGATION_REWARD", []),
    "claim-all": ("CLAIM_ALL_PROVIDER_REWARDS", []),
    "whitelist-add": ("ADD_TO_WHITELIST", ["address"]),
    "whitelist-remove": ("REMOVE_FROM_WHITELIST", ["address"]),
    "grant": ("GRANT_ADDITIONAL_REWARD", ["provider", "amount", "--epoch"]),
    "fund-reserve": ("FUND_RESERVE", ["amount"]),
}

INT_ARGS = {"amount", "epoch", "lock_duration"}

def main():
    parser = argparse.ArgumentParser(prog="stakeyield", description="StakeYield Client CLI")
    parser.add_argument("--node", help="Node URL (default: http://localhost:8000)")

    subparsers = parser.add_subparsers(dest="command", help="Sub-commands")

    # query
    p_query = subparsers.add_parser("query", help="Query engine state")
    sp_query = p_query.add_subparsers(dest="subcommand")

    sp_query.add_parser("epoch", help="Current epoch")

    pq_del = sp_query.add_parser("delegator", help="Delegator record")
    pq_del.add_argument("address")

    pq_prov = sp_query.add_parser("provider", help="Provider record")
    pq_prov.add_argument("address")

    pq_ss = sp_query.add_parser("stake-state", help="Claimable provider rewards")
    pq_ss.add_argument("address")

    pq_est = sp_query.add_parser("estimate", help="Estimate yield or accumulated value")
    pq_est.add_argument("kind", choices=["yield", "provider", "accumulated"])
    pq_est.add_argument("address")

    pq_dlg = sp_query.add_parser("delegation", help="Total delegated to a provider at an epoch")
    pq_dlg.add_argument("provider")
    pq_dlg.add_argument("epoch", type=int)

    pq_ops = sp_query.add_parser("operations", help="Recent committed operations")
    pq_ops.add_argument("--limit", type=int, default=20)
    pq_ops.add_argument("--caller")

    # tx
    p_tx = subparsers.add_parser("tx", help="Submit engine operations")
    sp_tx = p_tx.add_subparsers(dest="subcommand")
    for name, (op, params) in TX_COMMANDS.items():
        pt = sp_tx.add_parser(name, help=op)
        pt.set_defaults(op=op)
        pt.add_argument("--from", dest="caller", required=True, help="Caller address")
        for param in params:
            dest = param.lstrip("-").replace("-", "_")
            kwargs = {"type": int} if dest in INT_ARGS else {}
            if param.startswith("--"):
                pt.add_argument(param, dest=dest, **kwargs)
            else:
                pt.add_argument(param, **kwargs)

    args = parser.parse_args()

    if args.command == "query":
        if args.subcommand == "epoch": cmd_query_epoch(args)
        elif args.subcommand == "delegator": cmd_query_delegator(args)
        elif args.subcommand == "provider": cmd_query_provider(args)
        elif args.subcommand == "stake-state": cmd_query_stake_state(args)
        elif args.subcommand == "estimate": cmd_query_estimate(args)
        elif args.subcommand == "delegation": cmd_query_delegation(args)
        elif args.subcommand == "operations": cmd_query_operations(args)
        else: p_query.print_help()

    elif args.command == "tx":
        if args.subcommand: cmd_tx(args)
        else: p_tx.print_help()

    else:
        parser.print_help()

if __name__ == "__main__":
    main()
