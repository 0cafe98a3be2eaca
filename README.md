# cpusampler

A sampling CPU profiler for Python programs. While a profiler guard is
active, the `ITIMER_PROF` CPU timer delivers `SIGPROF` at a fixed frequency.
Each time it fires, the Python stack that the signal interrupted is captured
(up to 128 frames), identical stacks are counted, and the counts can be turned
into a report: plain text, folded stacks for flame-graph tools, or a profile
in the pprof protobuf format.

There are no runtime dependencies. `SIGPROF` and `setitimer` are needed, so
the profiler works on POSIX systems only, and it must be started from the main
thread, because that is where Python lets signal handlers be installed.

## Profiling a block of code

```python
from cpusampler.profiler import ProfilerGuard

with ProfilerGuard.new(100) as guard:
    busy_work()
    report = guard.report().build()

print(report)
```

Leaving the `with` block (or calling `guard.stop()`) disarms the timer, sets
`SIGPROF` to be ignored and discards the collected samples, so build the
report before the block ends. Only one profiler runs at a time: building a
second guard while one is active raises `cpusampler.errors.RunningError`.

## Configuring the guard

```python
from cpusampler.profiler import ProfilerGuardBuilder

guard = (
    ProfilerGuardBuilder()
    .frequency(1000)
    .blocklist(["site-packages", "threading"])
    .build()
)
try:
    run_workload()
    report = guard.report().build()
finally:
    guard.stop()
```

The default frequency is 99 samples per CPU second; a frequency that is not
positive raises `ValueError`. A sample is dropped when the source file of the
innermost interrupted frame has a path containing one of the blocklisted
strings. Each builder method returns a new builder.

`cpusampler.profiler.get_profiler()` returns the process-wide `Profiler`
that the guards drive. It has `start()`, `stop()`, `clear()`, `sample(...)`
and `is_blocklisted(filename)`, and its `data` attribute is the
`cpusampler.collector.Collector` holding the counted stacks.

## Reports

`guard.report()` returns a `ReportBuilder`:

- `build()` resolves every captured stack into `Frames` and counts them.
- `build_and_clear(True)` does the same and then discards the collected
  samples while the profiler keeps running, so a long-running program can
  take periodic reports from one guard.
- `build_unresolved()` returns an `UnresolvedReport` of the raw stacks with
  their counts.
- `frames_post_processor(fn)` registers a function applied to every `Frames`
  before it is counted, for example to rename threads:

```python
def rename(frames):
    frames.thread_name = "worker"

report = guard.report().frames_post_processor(rename).build()
```

A `Report` has `data` (a dict from `Frames` to count) and `timing` (a
`ReportTiming` with the frequency, start time and duration in seconds).
`str(report)` gives one line per stack in the form
`FRAME: inner -> FRAME: outer -> THREAD: name count`.

Symbol names are the qualified names of the captured code objects, with
their file and line number. `cpusampler.frames.demangle(name)` turns
Itanium C++ and legacy Rust mangled names into readable ones and returns any
other name unchanged; `Symbol.demangled()` applies it.

### Folded stacks

```python
with open("profile.folded", "w") as out:
    report.write_folded(out)
```

Each line reads `thread;outer;...;inner count`, the input format flame-graph
renderers expect. `report.folded_lines()` returns the same lines as strings.

### pprof

```python
with open("profile.pb", "wb") as out:
    out.write(report.pprof().encode())
```

`Report.pprof()` returns a `cpusampler.profile_proto.Profile` holding two
sample types, `samples/count` and `cpu/nanoseconds`, with each sample
labelled by its thread and its period set from the sampling frequency. Every
message class in `profile_proto` (`Profile`, `Sample`, `Label`, `Location`,
`Line`, `Function`, `Mapping`, `ValueType`) has `encode()` and a `decode(data)`
class method; malformed input raises `ValueError`.

## Collector

`cpusampler.collector.Collector` counts keys in a fixed table of 4096
buckets of four entries. When a bucket is full, the entry with the lowest
count is evicted into a `TempFileArray`, which buffers entries and spills
them to a temporary file. Iterating a collector yields every entry, so one
key may appear more than once; reports add these counts together.

## Perf maps

`cpusampler.perfmap.PerfMap.parse(lines)` and `PerfMap.from_file(path)` read
perf map files (`<start hex> <length hex> <name>` per line) and
`PerfMap.find(addr)` returns the `PerfMapSymbol` of the first range holding
an address. `perf_map_path(pid)` gives `/tmp/perf-<pid>.map`, and
`get_resolver()` creates that file for the current process if missing, loads
it, and reloads it in a background thread when it changes.

## Errors

All profiler errors derive from `cpusampler.errors.ProfilerError`:
`CreatingError` (the profiler could not be created), `RunningError` (it is
already running) and `NotRunningError` (it is not running). Operating-system
and file errors are raised as `OSError`.

## What it does not do

- Only the thread that receives `SIGPROF` is sampled, and Python runs signal
  handlers in the main thread, so stacks of other threads are not recorded.
- Stacks are Python frames; native frames are not walked, and perf map
  symbols are not used when stacks are resolved.
- It does not draw flame graphs; it writes folded stacks for a separate
  renderer.
- There is no command-line tool; the profiler is used from code.