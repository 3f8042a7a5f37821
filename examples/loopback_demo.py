#!/usr/bin/env python3
"""
Composition Recording and Performance Demonstration Script.

This script records a short conversation between two accounts on the
loopback transport, stores it, performs it twice (once against a peer that
answers, once against one that has gone quiet) and prints both reports.

Usage:
    python examples/loopback_demo.py
"""

import tempfile
from pathlib import Path

from virtuoso.composition.manager import CompositionManager
from virtuoso.composition.models import AssertionType, MatchType
from virtuoso.config_loader import load_config
from virtuoso.drivers.loopback import LoopbackProvider
from virtuoso.stanza_parser import parse_stanza
from virtuoso.templates import render_template

ALICE = "alice@localhost"
BOB = "bob@localhost"


def record_composition(manager: CompositionManager):
    """Record alice pinging the server and greeting bob."""
    print("\n" + "=" * 60)
    print("RECORDING")
    print("=" * 60)

    manager.start_recording()
    composer = manager.composer

    composer.capture_connect("alice", ALICE)
    composer.capture_connect("bob", BOB)

    composer.capture_send("alice", render_template("iq_ping", id="ping-1", to="localhost"), {"pingId": "ping-1"})
    composer.add_cue("alice", MatchType.ID, "pingId", timeout_ms=1000)
    composer.add_assertion("alice", AssertionType.EQUALS, "/iq/@type", "result")

    composer.capture_send("alice", render_template("chat", id="m1", to="{{peer}}", body="Hello Bob"))
    composer.add_cue("bob", MatchType.XPATH, "/message[body='Hello Bob']", timeout_ms=1000)
    composer.add_assertion("bob", AssertionType.XPATH, "/message/@from", ALICE)
    composer.capture_disconnect("bob")

    composition = manager.stop_recording(name="Ping and greet", description="Loopback demo", tags=["demo"])

    # Peer identifiers are resolved when performing
    manager.update_composition_metadata(composition.id, variables={"peer": BOB})
    composition = manager.get_composition(composition.id)

    print(f"Recorded {composition.name} ({composition.id}) with {len(composition.steps)} steps")
    for index, step in enumerate(composition.steps, start=1):
        print(f"  {index:>2}. [{step.type:<10}] {step.description}")
    return composition


def print_report(manager: CompositionManager, performance) -> None:
    composition = manager.get_composition(performance.composition_id)
    summary = performance.summary
    print(f"\n{performance.id}: {performance.status.value.upper()} "
          f"({summary.passed}/{summary.total} passed, {performance.duration_ms:.0f} ms)")

    for result in performance.step_results:
        step = composition.get_step(result.step_id)
        line = f"  {result.status.value:<8} {step.description}"
        if result.error and result.error.details:
            line += f"  [{result.error.details}: {result.error.message}]"
        print(line)
        if result.matched_message:
            print("           " + ", ".join(str(f) for f in parse_stanza(result.matched_message)))


def main():
    """Run the loopback demonstration."""
    print("Virtuoso - recording and performing over the loopback transport")

    with tempfile.TemporaryDirectory(prefix="virtuoso_demo_") as temp_dir:
        loopback = LoopbackProvider()
        # Settings and account overrides come from config/config.yml and VIRTUOSO_* variables
        config = load_config()
        config.paths.data_dir = Path(temp_dir)
        manager = CompositionManager.from_config(config, provider=loopback)

        try:
            composition = record_composition(manager)

            print("\n" + "=" * 60)
            print("PERFORMING")
            print("=" * 60)

            responder = loopback.add_responder("urn:xmpp:ping", '<iq type="result" id="ping-1" from="localhost"/>')
            print_report(manager, manager.perform(composition.id))

            # The server stops answering pings
            loopback.remove_responder(responder)
            print_report(manager, manager.perform(composition.id))

            analysis = manager.analyze_success_rates()
            print(f"\nOverall success rate: {analysis['overall_success_rate']:.0f}% "
                  f"over {analysis['total_performances']} performances")

        except Exception as e:
            print(f"\nDemo failed with error: {e}")
            import traceback
            traceback.print_exc()
        finally:
            loopback.close()


if __name__ == "__main__":
    main()
