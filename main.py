import asyncio
import logging
from pathlib import Path
import argparse
import sys

from config.config import SystemConfig, load_config
from nullifier_voting_system import NullifierVotingSystem
from registry.ledger import VoteStatus
from utils.utils import setup_logging, PerformanceMonitor, create_performance_report
from zk.exceptions import NullifierError

logger = logging.getLogger(__name__)


def run_scenario(system: NullifierVotingSystem, num_voters: int) -> dict:
    """One credential votes on p1, is refused a second p1 vote, then votes on p2"""
    voters = [system.register_voter() for _ in range(max(num_voters, 1))]
    c1 = voters[0]

    system.open_proposal("p1")
    system.open_proposal("p2")
    integrity = {'after_open': system.verify_integrity()}

    first = system.cast_vote(c1, "p1", 1)
    print(f"  C1 votes on p1: {'accepted' if first.accepted else first.reason.value}")
    integrity['after_first_vote'] = system.verify_integrity()

    second = system.cast_vote(c1, "p1", 0)
    print(f"  C1 votes on p1 again: "
          f"{'accepted' if second.accepted else second.reason.value}")
    integrity['after_double_vote'] = system.verify_integrity()

    third = system.cast_vote(c1, "p2", 0)
    print(f"  C1 votes on p2: {'accepted' if third.accepted else third.reason.value}")
    integrity['after_cross_scope_vote'] = system.verify_integrity()

    if system.status("p1", c1) != VoteStatus.ALREADY_VOTED:
        raise RuntimeError("C1 should be marked as already voted on p1")

    return {
        'voters': voters,
        'outcomes': [first, second, third],
        'integrity_checks': integrity,
    }


async def run_batch(system: NullifierVotingSystem, voters) -> list:
    """Remaining voters submit p1 votes concurrently, each bundle sent twice"""
    bundles = [(system.prepare_vote(v, "p1", i % 2), "p1")
               for i, v in enumerate(voters)]
    return await system.submit_batch(bundles + bundles)


def run_demo(config: SystemConfig, num_voters: int = 5) -> bool:
    print("\n" + "=" * 80)
    print("NULLIFIER VOTING DEMONSTRATION")
    print("=" * 80 + "\n")

    monitor = PerformanceMonitor()
    system = NullifierVotingSystem(config, monitor=monitor)

    try:
        print(f"Registering {num_voters} voters and opening proposals p1, p2...")
        scenario = run_scenario(system, num_voters)

        others = scenario['voters'][1:]
        if others:
            print(f"\nBatch submitting {len(others)} p1 votes (each twice)...")
            batch = asyncio.run(run_batch(system, others))
            accepted = sum(1 for r in batch if r.accepted)
            print(f"  {accepted} accepted, {len(batch) - accepted} refused")
            scenario['integrity_checks']['after_batch'] = system.verify_integrity()

        for proposal_id in ("p1", "p2"):
            tally = system.tally(proposal_id)
            print(f"\n{proposal_id}: {tally.accepted_count} votes, "
                  f"aggregate {tally.aggregate_commitment.hex()[:16]}...")

        print(f"\nLedger digest: {system.digest().hex()}")
        print("\nIntegrity Checks:")
        for check, passed in scenario['integrity_checks'].items():
            status = " PASSED" if passed else " FAILED"
            print(f"  {check}: {status}")

        report_path = system.export_snapshot()
        perf_path = config.results_dir / "performance_report.txt"
        with open(perf_path, "w") as f:
            f.write(create_performance_report(monitor))
        monitor.save_metrics(config.results_dir / "performance_metrics.json")

        print(f"\nSnapshot saved to: {report_path}")
        print(f"Performance report: {perf_path}")

        return all(scenario['integrity_checks'].values())

    except (NullifierError, RuntimeError, OSError) as e:
        logger.exception("Demo failed")
        print(f"\n Demo failed: {e}")
        return False


def main():
    parser = argparse.ArgumentParser(
        description='Nullifier-based private voting ledger')
    parser.add_argument('--voters', type=int, default=5,
                        help='Number of voters to register')
    parser.add_argument('--config', type=str,
                        default='config.yaml', help='Config file path')
    parser.add_argument('--log-level', type=str, default=None,
                        help='Override the configured log level')

    args = parser.parse_args()

    config = load_config(Path(args.config))
    setup_logging(args.log_level or config.log_level,
                  config.log_dir / "nullifier_ledger.log")

    success = run_demo(config, args.voters)
    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
