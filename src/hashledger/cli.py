#!/usr/bin/env python3
"""
hashledger CLI

Command-line entry points for inspecting a node's ledger and running a local
multi-node network.

Usage:
    hashledger keygen --wallet node.json        # Create or show a wallet
    hashledger status --db ledger.db            # Show chain status
    hashledger verify --db ledger.db            # Re-verify the stored chain
    hashledger simulate --nodes 3 --rounds 5    # Gossip between in-process nodes
"""

import argparse
import asyncio
import logging
import random
import sys
from pathlib import Path
from typing import List, Optional

from .config import NodeConfig
from .core.blockchain import Blockchain
from .core.errors import LedgerError
from .core.store import SqliteBlockStore
from .core.wallet import Wallet
from .networking.gossip import GossipHub
from .node import LedgerNode

logger = logging.getLogger(__name__)


def open_blockchain(db_path: str) -> Blockchain:
    if not Path(db_path).exists():
        raise LedgerError(f"No ledger database at {db_path}")
    return Blockchain(SqliteBlockStore(db_path))


def display_status(blockchain: Blockchain, recent: int = 5) -> None:
    """Print chain status and the most recent main-branch blocks."""
    stats = blockchain.get_blockchain_stats()

    print(f"\n{'=' * 60}")
    print("LEDGER STATUS")
    print(f"{'=' * 60}")
    print(f"Height: {stats.height}")
    print(f"Head: {stats.head}")
    print(f"Known blocks: {stats.known_blocks:,} (main branch {len(blockchain):,})")
    print(f"Orphan blocks: {stats.orphan_blocks}")

    print(f"\nRecent Blocks:")
    for block in blockchain.get_chain_view()[-recent:]:
        summary = block.summary()
        print(f"  #{summary['index']}: {summary['hash']} "
              f"{summary['transaction_count']} txs, validator {summary['validator']}")


def cmd_keygen(args: argparse.Namespace) -> int:
    path = Path(args.wallet)
    existed = path.exists()
    wallet = Wallet.load_or_create(path)
    print(f"{'Loaded' if existed else 'Created'} wallet {path}")
    print(f"Public key: {wallet.public_key}")
    return 0


def cmd_status(args: argparse.Namespace) -> int:
    blockchain = open_blockchain(args.db)
    try:
        display_status(blockchain, recent=args.recent)
    finally:
        blockchain.store.close()
    return 0


def cmd_verify(args: argparse.Namespace) -> int:
    blockchain = open_blockchain(args.db)
    try:
        valid = blockchain.validate_chain()
    finally:
        blockchain.store.close()

    if valid:
        print(f"✅ Chain valid up to block #{blockchain.height}")
        return 0
    print("❌ Chain failed verification")
    return 1


async def run_simulation(node_count: int, rounds: int, transactions_per_round: int,
                         db_dir: Optional[str] = None, seed: Optional[int] = None) -> List[LedgerNode]:
    """
    Run several nodes on one in-process hub.

    Each round a random node signs a few transactions and seals them; the
    others pick the block up through gossip.
    """
    rng = random.Random(seed)
    hub = GossipHub()
    base = NodeConfig.from_env()
    nodes = []
    for i in range(node_count):
        node_id = f"node-{i}"
        config = base.with_overrides(
            node_id=node_id,
            db_path=str(Path(db_dir) / f"{node_id}.db") if db_dir else None,
            wallet_path=None,
        )
        bus = hub.register(node_id, topic=config.topic)
        node = LedgerNode(config, bus=bus)
        await node.start()
        nodes.append(node)

    try:
        for round_number in range(1, rounds + 1):
            sealer = rng.choice(nodes)
            for _ in range(max(1, transactions_per_round)):
                receiver = rng.choice(nodes).wallet.public_key
                sealer.create_transaction(receiver, rng.randint(1, 1_000))
            block = sealer.seal()
            print(f"  Round {round_number}: {sealer.node_id} sealed block #{block.index} {block.hash[:16]}...")

            # Let every synchronizer drain its queue.
            for _ in range(3):
                await asyncio.sleep(0)
    finally:
        for node in nodes:
            await node.stop()

    return nodes


def cmd_simulate(args: argparse.Namespace) -> int:
    print(f"🚀 Simulating {args.nodes} nodes for {args.rounds} rounds")
    nodes = asyncio.run(run_simulation(args.nodes, args.rounds, args.transactions,
                                       db_dir=args.db_dir, seed=args.seed))

    print(f"\n📊 Heads:")
    heads = set()
    for node in nodes:
        status = node.status()
        heads.add(status['head'])
        print(f"   {status['node_id']}: #{status['height']} {status['head'][:16]}... "
              f"(accepted {status['sync']['blocks_accepted']}, orphans {status['orphan_blocks']})")

    if len(heads) == 1:
        print("✅ All nodes converged")
        return 0
    print("⚠️ Nodes did not converge")
    return 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="hashledger",
        description="hashledger - hash-linked ledger node",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  hashledger keygen --wallet node.json
  hashledger status --db ledger.db
  hashledger verify --db ledger.db
  hashledger simulate --nodes 3 --rounds 5
        """
    )
    parser.add_argument('--log-level', default=None, help='Logging level (default from HASHLEDGER_LOG_LEVEL)')

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    keygen_parser = subparsers.add_parser('keygen', help='Create or show a wallet')
    keygen_parser.add_argument('--wallet', default=str(Path.home() / ".hashledger-wallet.json"),
                               help='Wallet file path')

    status_parser = subparsers.add_parser('status', help='Show chain status')
    status_parser.add_argument('--db', required=True, help='Ledger database path')
    status_parser.add_argument('--recent', type=int, default=5, help='Number of recent blocks to list')

    verify_parser = subparsers.add_parser('verify', help='Re-verify every block on the main branch')
    verify_parser.add_argument('--db', required=True, help='Ledger database path')

    simulate_parser = subparsers.add_parser('simulate', help='Run nodes on an in-process gossip hub')
    simulate_parser.add_argument('--nodes', type=int, default=3, help='Number of nodes')
    simulate_parser.add_argument('--rounds', type=int, default=5, help='Number of sealing rounds')
    simulate_parser.add_argument('--transactions', type=int, default=3, help='Transactions per round')
    simulate_parser.add_argument('--db-dir', default=None, help='Persist each node under this directory')
    simulate_parser.add_argument('--seed', type=int, default=None, help='Random seed')

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    log_level = args.log_level or NodeConfig.from_env().log_level
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    commands = {
        'keygen': cmd_keygen,
        'status': cmd_status,
        'verify': cmd_verify,
        'simulate': cmd_simulate,
    }
    command = commands.get(args.command)
    if command is None:
        parser.print_help()
        return 2

    try:
        return command(args)
    except KeyboardInterrupt:
        print("\n👋 Goodbye!")
        return 0
    except LedgerError as e:
        print(f"❌ Error: {e}")
        return 1


if __name__ == '__main__':
    sys.exit(main())
