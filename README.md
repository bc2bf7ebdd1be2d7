# utilkit

A collection of small building blocks for Python applications. Time points
and durations are integer nanoseconds throughout; `utilkit.timing` has the
unit constants (`MILLISECOND`, `SECOND`, ...).

## What is inside

- `utilkit.logger`: `LoggerLevel` (with `from_string`, `marshal_text` and
  `unmarshal_text`) and `CompleteLogger`. `adapt_std_logger` and
  `adapt_test_logger` turn an object with a few logging methods into a logger
  with the full set of severity, context (`debug_c`, `info_cf`, ...) and
  level-dispatch (`write`, `writef`, `write_c`, `write_cf`) methods. Methods
  the wrapped object lacks fall back on `print`/`printf`.
- `utilkit.bimap`: `BiMap`, a thread-safe bidirectional map. `get` and
  `get_inverse` return `None` for a missing key; `must_get` and
  `must_get_inverse` raise `KeyError`.
- `utilkit.sorting`: `sort_int64` and `sort_uint64` sort a list in place,
  raising `ValueError` for values out of range.
- `utilkit.randstr`: `rand_str(n)` builds random alphanumeric strings.
- `utilkit.timing`: the cancellable `Context` (`background`, `with_cancel`,
  `with_timeout`, `cancel`, `err`, `wait`) with its `ContextCanceled` and
  `DeadlineExceeded` errors; `sleep`, `now` and `mock_now`; `Timestamp` and
  `TimestampNano` text encodings; the nested `Stopwatch` with `dump`,
  `to_json` and `from_json`; and `duration_minimalist_format`.
- `utilkit.stat`: `Stater` computes registered stats every period and hands
  them to a handler. `AtomicCounter`, `AtomicDuration` and the valuers
  `AtomicUint64RateStat`, `AtomicDurationPercentageStat` and
  `AtomicDurationAvgStat` cover rates, percentages and averages.
- `utilkit.pcm`: `pcm_level`, `pcm_normalize`, `max_pcm_sample` and
  `convert_pcm_bit_depth`; `PCMSampleRateConverter`, `PCMChannelsConverter`
  and `PCMSilenceDetector` work on streams of samples.
- `utilkit.files`: cancellable `copy_file` and `move_file`, each taking a copy
  function: `local_copy_file_func` or one built by `ssh_copy_file_func` from a
  session factory. Also `is_term_signal`, `term_signal_handler` and
  `logger_signal_handler`.
- `utilkit.translator`: a `Translator` that loads JSON translation files,
  picks a language from an `Accept-Language` header and offers
  `wsgi_middleware` to carry that language into `translate_c` and
  `translate_cf`.
- `utilkit.concurrency`: `Chan` (ordered function queue), `Eventer`,
  `ThreadLimiter`, `BufferPool`, `DebugMutex` and `FIFOMutex`.
- `utilkit.templater`: a `Templater` storing Jinja2 templates, each compiled
  together with shared layouts.

## Installation

```
pip install utilkit
```

## Examples

```python
from utilkit.bimap import BiMap

m = BiMap()
m.set("a", 1)
assert m.get("a") == 1
assert m.must_get_inverse(1) == "a"
```

```python
from utilkit.timing import SECOND, Context, sleep

ctx = Context.background().with_cancel()
ctx.cancel()
sleep(ctx, 60 * SECOND)  # raises ContextCanceled straight away
```

```python
from utilkit.concurrency import Chan, ChanOptions
from utilkit.timing import Context

c = Chan(ChanOptions(process_all=True))
c.add(lambda: print("first"))
c.add(c.stop)
c.start(Context.background())  # prints "first", then returns
```

```python
from utilkit.translator import Translator, TranslatorOptions

t = Translator(TranslatorOptions(default_language="en", valid_languages=["en", "fr"]))
assert t.parse_accept_language("fr-FR, fr;q=0.9, en;q=0.8") == "fr"
assert t.translate("fr", "missing") == "fr.missing"
```

## What it does not do

There is no worker object that blocks until a tree of tasks has finished, and
nothing installs process signal handlers: the handler functions in
`utilkit.files` only decide what to do with a signal they are given, and
wiring them to `signal` is left to the caller.

## Running the tests

```
pip install -e .[test]
pytest
```