# MIT License
# Copyright (c) 2025 Hashborn

import argparse
import json
import logging
import os
import sys
import time
from uvicorn import Config, Server
from ..protocol.config.loader import load_config
from ..engine.core.engine import build_local_engine
from ..engine.rpc import api # import module to set globals

logger = logging.getLogger(__name__)

def cmd_init(args):
    """Initialize data dir with a config file based on the selected preset."""
    data_dir = args.datadir
    os.makedirs(data_dir, exist_ok=True)

    config_path = os.path.join(data_dir, "config.json")
    if os.path.exists(config_path):
        print(f"Config already exists at {config_path}")
        return

    config = load_config(network=args.network)
    if config.epoch_start == 0:
        # Epoch 0 starts at init time, not at every run
        config = config.model_copy(update={"epoch_start": int(time.time())})
    with open(config_path, "w") as f:
        f.write(json.dumps(config.model_dump(), indent=2))
    print(f"Node initialized in {data_dir} ({config.network_id})")

def cmd_run(args):
    data_dir = args.datadir
    os.makedirs(data_dir, exist_ok=True)
    db_path = os.path.join(data_dir, "engine.db")
    config = load_config(os.path.join(data_dir, "config.json"), network=args.network)

    print(f"Starting StakeYield engine ({config.network_id})...")
    print(f"Data DB: {db_path}")
    print(f"RPC: {args.host}:{args.port}")

    try:
        engine = build_local_engine(config, db_path)
    except (RuntimeError, ValueError) as e:
        print(f"Error: {e}")
        sys.exit(1)
    if args.reserve:
        engine.token.mint(config.engine_address, args.reserve)
        logger.info(f"Minted {args.reserve} into the reward reserve")
    api.engine = engine

    server = Server(Config(app=api.app, host=args.host, port=args.port, log_level="info"))
    try:
        server.run()
    except KeyboardInterrupt:
        pass
    finally:
        engine.db.close()

def main():
    parser = argparse.ArgumentParser(description="StakeYield Node CLI")
    parser.add_argument("--datadir", default="./.stakeyield", help="Data directory")
    parser.add_argument("--network", default=None, help="Preset: devnet, testnet or mainnet")
    parser.add_argument("--log-level", default="INFO", help="Logging level")

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("init", help="Write config.json for the selected preset")

    run_parser = subparsers.add_parser("run", help="Run the engine RPC")
    run_parser.add_argument("--host", default="0.0.0.0", help="RPC Host")
    run_parser.add_argument("--port", type=int, default=8000, help="RPC Port")
    run_parser.add_argument("--reserve", type=int, default=0, help="Tokens to mint into the reserve on start")

    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format='%(asctime)s %(levelname)s: %(message)s',
        datefmt='%H:%M:%S'
    )

    if args.command == "init":
        cmd_init(args)
    elif args.command == "run":
        cmd_run(args)

if __name__ == "__main__":
    main()
