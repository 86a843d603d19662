# scratchkit

scratchkit builds model prompts for code assistants and turns the model's raw output into response payloads. It also records what users do with accepted completions and writes that up as telemetry.

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Tokenizers

Scratchpads that count tokens take any object with an `encode(text)` method. The result may be a sequence of token ids or an object with an `ids` attribute. It is wrapped in `TokenizerView` from `scratchkit.scratchpads.history`.

`TokenizerView` has two methods:

- `count_tokens(text)` returns the number of tokens.
- `assert_one_token(text)` raises `ScratchpadError` unless the text encodes to exactly one token.

A tokenizer failure is also raised as `ScratchpadError`.

## Scratchpads

Every scratchpad is used the same way:

1. Create it.
2. Call `apply_model_adaptation_patch(patch)` with a dict of model-specific settings. Missing keys get defaults.
3. `await scratchpad.prompt(context_size, sampling_parameters)` returns the prompt text. Most scratchpads also set `sampling_parameters.stop`.
4. Build the answer payload:
   - `scratchpad.response_n_choices(choices, stopped)` builds the payload for complete answers.
   - `scratchpad.response_streaming(delta, stop_toks, stop_length)` returns a `(payload, finished)` pair for each streamed chunk.

Errors are raised as `ScratchpadError`.

### Fill-in-the-middle completion

`SingleFileFIM(tokenizer, post, order, tele_storage)` lives in `scratchkit.scratchpads.fim`.

- `post` is a `CodeCompletionPost`. It holds `CompletionInputs` (sources, cursor and a multiline flag), `SamplingParameters` and a model name.
- `order` is `"PSM"` or `"SPM"`.
- `tele_storage` is a telemetry `Storage`.

The patch may set these keys:

| Key | Default |
| --- | --- |
| `fim_prefix` | `<fim_prefix>` |
| `fim_suffix` | `<fim_suffix>` |
| `fim_middle` | `<fim_middle>` |
| `eot` | `<|endoftext|>` |
| `eos` | empty |

Each of these must be a single token; an empty `eos` is not checked.

The prompt takes lines around the cursor, alternating before and after, while they fit in `context_size - max_new_tokens`. The special tokens are first removed from the source.

Completions are cut at end-of-text or at a blank line. Single-line requests are also cut at the first newline; the helper that does this is `cut_result` in the same module. The first completion is registered for snippet telemetry, and its id is returned as `snippet_telemetry_id`.

### Chat

Chat requests are `ChatPost` objects made of `ChatMessage` items. The roles are `system`, `user`, `assistant` and `context_file`. The content of a `context_file` message is a JSON list of `{"file_name": ..., "file_content": ...}`; it is parsed with `parse_context_files`.

`ChatLlama2(tokenizer, post, vecdb_search)` lives in `scratchkit.scratchpads.chat_llama2`.

- It renders `<s>[INST] ... [/INST]` turns.
- The patch keys are `s`, `slash_s` and `default_system_message`.
- History is trimmed to the token budget with `limit_messages_history`.
- Stop phrases are `<s>` and `</s>`, or their patched values.
- When `vecdb_search` is not `None`, search results for the latest message are inserted before it.

`ChatPassthrough(post, vecdb_search)` lives in `scratchkit.scratchpads.chat_passthrough`.

- It returns `"PASSTHROUGH "` followed by the messages as compact JSON.
- Context files are turned into `user` messages.
- History is trimmed to a byte budget with `limit_messages_history_in_bytes`.
- The patch keys are `limit_bytes` (default 12288) and `default_system_message`.
- It does not use `vecdb_search`.
- Answers are passed through unchanged.

`DeltaDeltaChatStreamer`, in `scratchkit.scratchpads.deltadelta`, holds back one streamed delta. A stop phrase split across two deltas is therefore cut before any part of it is sent.

```python
import asyncio
from scratchkit.scratchpads.chat_passthrough import ChatPassthrough
from scratchkit.scratchpads.history import ChatMessage, ChatPost, SamplingParameters

post = ChatPost(messages=[ChatMessage("user", "hello")])
pad = ChatPassthrough(post, None)
pad.apply_model_adaptation_patch({"default_system_message": "Be brief."})
print(asyncio.run(pad.prompt(2048, SamplingParameters())))
```

### Vector database search

`scratchkit.vecdb` provides `VecdbSearch`, an abstract class with `async search(query)`. `VecdbSearchHttp(url, account, top_k)` implements it by POSTing to an HTTP endpoint; by default that is a service on `127.0.0.1` port 8008. Failures raise `VecdbError`.

Two helpers turn results into chat context:

- `vecdb_resp_to_prompt` renders the results as a context message.
- `embed_vecdb_results` inserts that message just before the last message of a `ChatPost`.

## Telemetry

Telemetry state lives in a `Storage` object from `scratchkit.telemetry.structs`.

### Snippet flow

1. A completion's result is registered with `snippet_register_from_data4cache`. `SingleFileFIM` does this itself.
2. The editor reports acceptance through `snippet_accepted(storage, snippet_telemetry_id)`. It returns `False` for an unknown id.
3. Each file change is passed to `sources_changed(storage, uri, text)`.
   - It measures how much of each accepted snippet the user kept.
   - It finishes snippets that were edited beyond recognition.
   - It updates the robot/human and completion-retention accumulators.

Steps 1 to 3 use functions from `scratchkit.telemetry.snippets_collection`.

### Writing files

Three functions each write one JSON file to `<cache_dir>/telemetry/compressed` and clear the matching part of the storage:

- `compress_basic_telemetry_to_file` writes `*-net.json`.
- `tele_robot_human_compress_to_file` writes `*-rh.json`.
- `compress_tele_completion_to_file` writes `*-comp.json`.

### Sending

`scratchkit.telemetry.transmit` takes its settings from a `TelemetryContext`: the cache directory, storage, API key, enable flags, client version and destination URLs.

- `telemetry_full_cycle(context, skip_sending_part)` does three things:
  - writes all three files;
  - sends them with `send_telemetry_files_to_mothership` when basic telemetry is enabled and a destination is set, moving delivered files to `telemetry/sent`;
  - keeps at most 29 files in each directory.
- `send_telemetry_data` raises `TelemetrySendError` when a delivery fails or the server's `retcode` is not `"OK"`.

`scratchkit.telemetry.snippets_transmit.send_finished_snippets(context)` does three things:

- drops snippets that timed out;
- sends finished snippets one by one, when snippet telemetry is enabled;
- returns how many were delivered.

Two coroutines run these jobs forever:

- `telemetry_background_task` runs every hour.
- `tele_snip_background_task` runs every 30 seconds.

## What this package does not do

- There is no function that picks a scratchpad by name; construct the class you need directly.
- There is no generic chat scratchpad with configurable `SYSTEM:`/`USER:`/`ASSISTANT:` keywords. Only the `[INST]` format and the passthrough format are available.
- It does not load tokenizers, run a server or provide a command-line program.
- The background telemetry coroutines must be scheduled by your own event loop.