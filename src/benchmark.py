import io
import os
import sys
import time
import pstats
import cProfile
import functools
from typing import Callable, Any

from memory_profiler import memory_usage

from src.clicks_memory import clicks_memory
from src.clicks_time import clicks_time
from src.common.config import AggregationConfig

mapping_path = "data/encodes.csv"
events_path = "data/decodes.json"
output_file = "src/benchmark_results.txt"


def measure_time(func: Callable, *args, **kwargs) -> tuple[float, Any]:
    """Mide el tiempo de ejecución y retorna el resultado."""
    start_time = time.perf_counter()
    result = func(*args, **kwargs)
    return time.perf_counter() - start_time, result


def measure_memory(func: Callable, *args, **kwargs) -> tuple[float, Any]:
    """Mide el pico de memoria (MB) y retorna el resultado."""
    mem_samples, result = memory_usage((func, args, kwargs), interval=0.1, retval=True)
    return max(mem_samples), result


def profile_performance(func):
    """
    Runs ``func`` once under memory_profiler while timing it, so time and
    peak memory come from the same execution.
    Returns (peak_mb, seconds, result).
    """

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        def time_wrapped_func():
            return measure_time(func, *args, **kwargs)

        peak_mem, (duration, result) = measure_memory(time_wrapped_func)

        print(f"\n[PERF] {func.__name__}:")
        print(f"  > Tiempo: {duration:.4f} s")
        print(f"  > Memoria: {peak_mem:.2f} MB")

        return peak_mem, duration, result

    return wrapper


def profile_detailed(func):
    """cProfile breakdown (top 15 by cumulative time). Adds overhead to the measured time."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        profiler = cProfile.Profile()
        profiler.enable()
        result = func(*args, **kwargs)
        profiler.disable()

        s = io.StringIO()
        pstats.Stats(profiler, stream=s).sort_stats("cumulative").print_stats(15)
        return result, s.getvalue()

    return wrapper


def run_final_benchmark(config: AggregationConfig | None = None):
    print("\n[FINAL BENCHMARK] Executing both strategies with real data")
    config = config or AggregationConfig()

    with open(output_file, "w", encoding="utf-8") as f:
        f.write("=" * 80 + "\n")
        f.write("=== CLICK ANALYTICS BENCHMARK (CANONICAL LOGS) ===\n")
        f.write("=" * 80 + "\n\n")

        for name, func in [("Clicks Time", clicks_time), ("Clicks Memory", clicks_memory)]:
            f.write(f"--- Running {name} ---\n")
            print(f"Benchmarking {name}...")

            detailed_func = profile_detailed(profile_performance(func))

            # los wide events (bytes) salen por sys.stdout.buffer
            log_buffer = io.TextIOWrapper(io.BytesIO(), encoding="utf-8")
            original_stdout = sys.stdout
            sys.stdout = log_buffer
            try:
                (peak_mem, duration, report), detailed_stats = detailed_func(
                    mapping_path, events_path, config
                )
            except Exception as e:
                sys.stdout = original_stdout
                f.write(f"Error executing {name}: {str(e)}\n\n")
                continue
            sys.stdout = original_stdout

            f.write("Performance Metrics:\n")
            f.write(f"  > Execution Time: {duration:.4f} s\n")
            f.write(f"  > Peak Memory: {peak_mem:.2f} MB\n")
            f.write("Detailed Profile (cProfile):\n")
            f.write(detailed_stats + "\n")
            f.write("Canonical Log (Wide Event):\n")
            log_buffer.flush()
            f.write(log_buffer.buffer.getvalue().decode())
            f.write("Report:\n")
            f.write(report.render() + "\n")

    print(f"\nBenchmark completed. Results saved to {output_file}")


if __name__ == "__main__":
    if os.path.exists(mapping_path) and os.path.exists(events_path):
        run_final_benchmark()
    else:
        print(f"Error: No se encuentran {mapping_path} / {events_path}")
