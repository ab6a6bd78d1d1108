#!/usr/bin/env python3
"""Random-operation fuzzing for justls.

A fuzzer keeps some state, applies random operations to it and checks its
invariants after every step. Fuzzers live in `fuzz_*.py` modules next to
this one and are picked up automatically.

Usage:
    python -m tests.fuzzing.fuzz [--examples N] [--steps N] [--seed N] [pattern...]
"""

import abc
import argparse
import importlib
import random
import sys
import time
from pathlib import Path
from typing import Any, Callable, Optional, TextIO

# Characters covering one, two, three and four byte UTF-8 encodings
ALPHABET = "abcxyz_-09 \t:={}#\"'éß日本😀🎉"


def random_text(max_length: int = 30, alphabet: str = ALPHABET) -> str:
    """Generate a random string from `alphabet`."""
    return "".join(random.choices(alphabet, k=random.randint(0, max_length)))


def weighted_choice(ops: list[tuple[Callable[[], None], int]]) -> None:
    """Call one of the (callable, weight) pairs at random."""
    op = random.choices([op for op, _ in ops], weights=[w for _, w in ops])[0]
    op()


class Fuzzer(abc.ABC):
    """
    Base class for fuzzers.

    Subclasses set `name` and implement reset(), do_random_operation() and
    check_invariants(); the last one raises AssertionError on a violation.
    """

    name: str = "unnamed"

    def __init__(self):
        self.operations = 0
        self.op_counts: dict[str, int] = {}

    def record_op(self, name: str) -> None:
        self.operations += 1
        self.op_counts[name] = self.op_counts.get(name, 0) + 1

    @abc.abstractmethod
    def reset(self) -> None: ...

    @abc.abstractmethod
    def do_random_operation(self) -> None: ...

    @abc.abstractmethod
    def check_invariants(self) -> None: ...

    def get_stats(self) -> dict[str, Any]:
        return {}


class FuzzRunner:
    """Drives one fuzzer through `examples` resets of `steps` operations."""

    def __init__(
        self,
        examples: int = 1000,
        steps: int = 50,
        seed: Optional[int] = None,
        out: Optional[TextIO] = None,
    ):
        self.examples = examples
        self.steps = steps
        self.seed = seed if seed is not None else random.randint(0, 2**32)
        self.out = out or sys.stdout

    def _print(self, text: str = "") -> None:
        print(text, file=self.out)

    def run(self, fuzzer: Fuzzer) -> Optional[str]:
        """Run a fuzzer; returns a failure description, or None if it passed."""
        random.seed(self.seed)
        started = time.monotonic()

        for example in range(self.examples):
            fuzzer.reset()
            for step in range(self.steps):
                fuzzer.do_random_operation()
                try:
                    fuzzer.check_invariants()
                except AssertionError as e:
                    return (
                        f"{fuzzer.name}: example {example + 1}, step {step + 1}, "
                        f"seed {self.seed}: {e}"
                    )

        elapsed = time.monotonic() - started
        self._print(
            f"{fuzzer.name}: {self.examples:,} examples, "
            f"{fuzzer.operations:,} operations in {elapsed:.1f}s"
        )
        for key, value in fuzzer.get_stats().items():
            self._print(f"  {key}: {value}")
        return None


def discover_fuzzers() -> list[type[Fuzzer]]:
    """Collect Fuzzer subclasses from the fuzz_*.py modules of this package."""
    fuzzers = []
    for path in sorted(Path(__file__).parent.glob("fuzz_*.py")):
        module = importlib.import_module(f"{__package__}.{path.stem}")
        for attr in vars(module).values():
            if (
                isinstance(attr, type)
                and issubclass(attr, Fuzzer)
                and attr is not Fuzzer
                and attr.__module__ == module.__name__
            ):
                fuzzers.append(attr)
    return fuzzers


def run_suite(
    examples: int = 1000,
    steps: int = 50,
    seed: Optional[int] = None,
    patterns: Optional[list[str]] = None,
    out: Optional[TextIO] = None,
) -> int:
    """
    Run every discovered fuzzer whose name matches one of `patterns`.

    Returns:
        Exit code (0 if all passed, 1 on any failure or if nothing matched)
    """
    runner = FuzzRunner(examples=examples, steps=steps, seed=seed, out=out)
    fuzzers = [
        cls
        for cls in discover_fuzzers()
        if not patterns or any(p.lower() in cls.name.lower() for p in patterns)
    ]
    if not fuzzers:
        runner._print("No fuzzers found")
        return 1

    failures = []
    for cls in fuzzers:
        failure = runner.run(cls())
        if failure is not None:
            runner._print(f"FAILED {failure}")
            failures.append(failure)

    runner._print(f"Passed: {len(fuzzers) - len(failures)}, Failed: {len(failures)}")
    return 1 if failures else 0


def main():
    parser = argparse.ArgumentParser(description="Run the justls fuzzers")
    parser.add_argument("--examples", "-n", type=int, default=1000)
    parser.add_argument("--steps", "-s", type=int, default=50)
    parser.add_argument("--seed", type=int, default=None)
    parser.add_argument("patterns", nargs="*", help="Filter fuzzers by name")
    args = parser.parse_args()

    sys.exit(
        run_suite(
            examples=args.examples,
            steps=args.steps,
            seed=args.seed,
            patterns=args.patterns or None,
        )
    )


if __name__ == "__main__":
    # Go through the package module so discovered fuzzers share its Fuzzer class
    importlib.import_module(f"{__package__}.fuzz").main()
