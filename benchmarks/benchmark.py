#!/usr/bin/env python3
"""Benchmark annotation resolution and reconciliation on real source files.

Usage:
    # Benchmark against this repository's own sources:
    python benchmarks/benchmark.py

    # Benchmark against your own project:
    python benchmarks/benchmark.py /path/to/project

    # Benchmark against multiple projects:
    python benchmarks/benchmark.py /path/to/project1 /path/to/project2

Every Nth non-blank line of each source file gets an annotation. The script
then measures a read-only resolve pass, and a reconciliation after inserting
lines at the top of every file (which forces every annotation to move).
"""

import os
import sys
import time
import tracemalloc

from mcp_line_annotations.engine import AnnotationEngine
from mcp_line_annotations.models import DocumentChange, DocumentChangeEvent, Matched
from mcp_line_annotations.text_source import BufferTextSource, DiskTextSource

SOURCE_EXTENSIONS = (".py", ".js", ".ts", ".go", ".rs", ".java", ".c", ".h")
ANNOTATE_EVERY = 7
INSERTED_HEADER = "# benchmark header\n# second header line\n"


def collect_files(root, max_files=400):
    """Relative paths of source files under root, skipping hidden dirs."""
    found = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = [d for d in dirnames if not d.startswith(".") and d != "node_modules"]
        for filename in sorted(filenames):
            if filename.endswith(SOURCE_EXTENSIONS):
                found.append(os.path.relpath(os.path.join(dirpath, filename), root))
            if len(found) >= max_files:
                return found
    return found


def build_engine(root, files):
    """Annotate every Nth non-blank line and return (engine, buffers, count)."""
    buffers = BufferTextSource(DiskTextSource(root))
    engine = AnnotationEngine(buffers)
    count = 0
    for file_path in files:
        lines = buffers.get_lines(file_path)
        if not lines:
            continue
        for line, text in enumerate(lines):
            if text.strip() and line % ANNOTATE_EVERY == 0:
                engine.add_annotation(file_path, line, f"note {count}")
                count += 1
    return engine, buffers, count


def measure_project(name, root):
    print(f"\n{'='*60}")
    print(f"  Benchmarking: {name}")
    print(f"  Path: {root}")
    print(f"{'='*60}")

    files = collect_files(root)
    start = time.perf_counter()
    engine, buffers, count = build_engine(root, files)
    setup_s = time.perf_counter() - start
    annotated = list(engine.all_annotations())

    tracemalloc.start()
    start = time.perf_counter()
    matched = 0
    for file_path in annotated:
        matched += sum(1 for r in engine.resolve_all(file_path).values() if isinstance(r, Matched))
    resolve_s = time.perf_counter() - start
    _, peak_mem = tracemalloc.get_traced_memory()
    tracemalloc.stop()

    for file_path in annotated:
        text = "\n".join(buffers.get_lines(file_path))
        buffers.set_text(file_path, INSERTED_HEADER + text)
        engine.notify_change(
            file_path,
            DocumentChangeEvent(changes=[DocumentChange(0, 0, INSERTED_HEADER)]),
            recent_input=True,
        )

    start = time.perf_counter()
    reconciled = engine.flush()
    reconcile_s = time.perf_counter() - start
    moved = sum(
        1 for annotations in engine.all_annotations().values()
        for a in annotations if a.matched
    )

    stats = {
        "name": name,
        "files": len(annotated),
        "annotations": count,
        "setup_time_s": round(setup_s, 3),
        "resolve_time_ms": round(resolve_s * 1000, 2),
        "resolved": matched,
        "reconcile_time_ms": round(reconcile_s * 1000, 2),
        "reconciled_files": len(reconciled),
        "moved": moved,
        "peak_memory_mb": round(peak_mem / 1024 / 1024, 2),
    }

    print(f"\n  Annotated files: {stats['files']}")
    print(f"  Annotations: {stats['annotations']:,}")
    print(f"  Setup time: {stats['setup_time_s']}s")
    print(f"  Resolve pass: {stats['resolve_time_ms']}ms ({stats['resolved']:,} matched)")
    print(f"  Reconcile after insert: {stats['reconcile_time_ms']}ms ({stats['moved']:,} re-anchored)")
    print(f"  Peak memory (resolve): {stats['peak_memory_mb']} MB")
    return stats


def print_summary(all_stats):
    """Print a markdown-formatted summary table."""
    print(f"\n\n{'='*80}")
    print("  BENCHMARK RESULTS")
    print(f"{'='*80}\n")

    print("| Project | Files | Annotations | Resolve | Reconcile | Re-anchored | Peak Memory |")
    print("|---------|------:|------------:|--------:|----------:|------------:|------------:|")
    for s in all_stats:
        print(
            f"| {s['name']} | {s['files']:,} | {s['annotations']:,} | {s['resolve_time_ms']}ms "
            f"| {s['reconcile_time_ms']}ms | {s['moved']:,} | {s['peak_memory_mb']} MB |"
        )


def main():
    if len(sys.argv) > 1:
        roots = [os.path.abspath(p) for p in sys.argv[1:]]
    else:
        roots = [os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "src"))]

    all_stats = []
    for root in roots:
        name = os.path.basename(root.rstrip(os.sep))
        if not os.path.isdir(root):
            print(f"\nSkipping {name}: path not found: {root}")
            continue
        try:
            all_stats.append(measure_project(name, root))
        except Exception as e:
            print(f"\nError benchmarking {name}: {e}")
            import traceback
            traceback.print_exc()

    if all_stats:
        print_summary(all_stats)


if __name__ == "__main__":
    main()
