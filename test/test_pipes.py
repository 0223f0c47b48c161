"""
Concurrency tests for Nemo pipes
Tests the prelude stages, stage composition, abandonment and error delivery
"""

import threading
import time
import pytest
from error_handling import NemoRuntimeError
from pipes import (
  PipeChannel,
  PipeAbandoned,
  get_stage_registry,
  make_execution_context,
  pipe_pull,
  run_pipe,
)
from utilities import make_number, unbound_name_error


def value_of(nemo, code):
  return nemo.eval_line(code)['value']


class TestPreludeStages:
  """Test the pipe builtins"""

  @pytest.mark.parametrize("n", [0, 1, 5])
  def test_range_show_pipe(self, nemo, capsys, n):
    result = nemo.eval_line(f"range({n}) | show_pipe()")
    assert result['type'] == "Unit"
    expected = "".join(f"{i}\n" for i in range(n))
    assert capsys.readouterr().out == expected

  def test_three_stage_pipeline(self, nemo, capsys):
    nemo.eval_line("range(10) | map(x -> x*x) | filter(x -> x % 2 = 0) | show_pipe()")
    assert capsys.readouterr().out.split() == ["0", "4", "16", "36", "64"]

  def test_reduce(self, nemo):
    assert value_of(nemo, "range(11) | reduce(|acc, x| -> acc + x, 0)") == 55.0

  def test_reduce_of_empty_pipe_is_start(self, nemo):
    assert value_of(nemo, "range(0) | reduce(|acc, x| -> acc + x, 42)") == 42.0

  def test_filter(self, nemo):
    code = "range(10) | filter(x -> x % 3 = 0) | reduce(|a, b| -> a + b, 0)"
    assert value_of(nemo, code) == 18.0

  def test_foreach(self, nemo, capsys):
    nemo.eval_line('range(3) | foreach(x -> print(x + 10))')
    assert capsys.readouterr().out == "10\n11\n12\n"

  def test_take_from_finite_producer(self, nemo):
    assert value_of(nemo, "range(3) | take(10) | reduce(|a, b| -> a + 1, 0)") == 3.0

  def test_take_from_infinite_producer(self, nemo):
    nemo.eval_line("naturals() => _count_up(0)")
    nemo.eval_line("_count_up(i) => while true do { push i; i := i + 1 }")
    assert value_of(nemo, "naturals() | take(4) | reduce(|a, b| -> a + b, 0)") == 6.0

  def test_prelude_leaves_user_bindings_alone(self, nemo):
    nemo.eval_line("v := 99; i := 7")
    nemo.eval_line("range(3) | take(2) | map(x -> x) | reduce(|a, b| -> a + b, 0)")
    assert value_of(nemo, "v") == 99.0
    assert value_of(nemo, "i") == 7.0


class TestPipeSemantics:
  """Test push/pull routing and stage results"""

  def test_block_stages(self, nemo):
    assert value_of(nemo, "{push 5} | {pull}") == 5.0

  def test_pipe_value_is_consumer_value(self, nemo):
    assert value_of(nemo, '{push 1; "ignored"} | {pull + 1}') == 2.0

  def test_sentinel_repeats(self, nemo):
    assert value_of(nemo, "{push 1} | {pull; pull; pull = finished}") is True

  def test_order_is_preserved(self, nemo):
    code = "{push 1; push 2; push 3} | {a := pull; b := pull; c := pull; a * 100 + b * 10 + c}"
    assert value_of(nemo, code) == 123.0

  def test_nested_pipe(self, nemo):
    code = "range(5) | (map(x -> x + 1) | reduce(|a, b| -> a + b, 0))"
    assert value_of(nemo, code) == 15.0

  def test_push_is_dynamically_scoped(self, nemo):
    nemo.eval_line("emit(x) => push x")
    assert value_of(nemo, "{emit(1); emit(2)} | reduce(|a, b| -> a + b, 0)") == 3.0

  def test_closure_called_in_stage_pulls_from_stage(self, nemo):
    nemo.eval_line("next_value := () -> pull")
    assert value_of(nemo, "range(3) | {next_value(); next_value()}") == 1.0

  def test_return_stops_at_stage_boundary(self, nemo):
    nemo.eval_line("f() => { r := range(3) | { return 8 }; r }")
    assert value_of(nemo, "f()") == 8.0

  def test_pipe_result_can_be_assigned(self, nemo):
    nemo.eval_line("total := range(4) | reduce(|a, b| -> a + b, 0)")
    assert value_of(nemo, "total") == 6.0

  def test_stages_share_environment(self, nemo):
    nemo.eval_line("seen := 0")
    nemo.eval_line("range(4) | foreach(x -> seen := seen + x)")
    assert value_of(nemo, "seen") == 6.0

  def test_registry_is_empty_afterwards(self, nemo):
    nemo.eval_line("range(3) | reduce(|a, b| -> a + b, 0)")
    assert len(get_stage_registry()) == 0


class TestAbandonment:
  """Test consumers that stop pulling early"""

  def test_early_stop(self, nemo):
    assert value_of(nemo, "range(1000) | {pull; pull}") == 1.0

  def test_producer_is_not_driven_further(self, nemo, capsys):
    nemo.eval_line("noisy(i) => while true do { print(i); push i; i := i + 1 }")
    assert value_of(nemo, "noisy(0) | {pull; pull}") == 1.0
    out = capsys.readouterr().out
    assert out.startswith("0\n1\n")
    assert "3" not in out

  def test_consumer_that_never_pulls(self, nemo):
    assert value_of(nemo, "range(1000) | 7") == 7.0

  def test_repeated_early_stops(self, nemo):
    for _ in range(20):
      assert value_of(nemo, "range(1000) | {pull}") == 0.0


class TestPipeErrors:
  """Test error delivery between stages"""

  def test_producer_error_surfaces_at_pull(self, nemo):
    with pytest.raises(NemoRuntimeError) as exc_info:
      nemo.eval_line("{push 1; push nope} | reduce(|a, b| -> a + b, 0)")
    assert exc_info.value.kind == "UnboundName"

  def test_consumer_error_propagates(self, nemo):
    with pytest.raises(NemoRuntimeError) as exc_info:
      nemo.eval_line("range(3) | {pull / 0}")
    assert exc_info.value.kind == "DivisionByZero"

  def test_push_sentinel_is_rejected(self, nemo):
    with pytest.raises(NemoRuntimeError) as exc_info:
      nemo.eval_line("{push finished} | {pull}")
    assert exc_info.value.kind == "TypeMismatch"

  def test_pull_in_producer_without_outer_pipe(self, nemo):
    with pytest.raises(NemoRuntimeError) as exc_info:
      nemo.eval_line("{push pull} | {pull}")
    assert exc_info.value.kind == "NoActivePipe"

  def test_unpulled_producer_error_is_raised(self):
    producer_node = {'type': 'NAME', 'value': 'producer', 'span': None}
    consumer_node = {'type': 'NAME', 'value': 'consumer', 'span': None}

    def evaluate(node, env, context):
      if node is producer_node:
        raise unbound_name_error("nope")
      # stop without pulling, once the producer error is on the channel
      channel = context['pull_from']
      deadline = time.monotonic() + 5
      while channel.unobserved_failure() is None and time.monotonic() < deadline:
        time.sleep(0.01)
      return make_number(1)

    with pytest.raises(NemoRuntimeError) as exc_info:
      run_pipe(producer_node, consumer_node, {}, None, evaluate)
    assert exc_info.value.kind == "UnboundName"

  def test_producer_error_before_consumer_ends(self, nemo):
    code = "{push 1; nope} | {v := pull; pull; v}"
    with pytest.raises(NemoRuntimeError) as exc_info:
      nemo.eval_line(code)
    assert exc_info.value.kind == "UnboundName"

  def test_interpreter_usable_after_error(self, nemo):
    with pytest.raises(NemoRuntimeError):
      nemo.eval_line("range(3) | {pull / 0}")
    assert value_of(nemo, "range(3) | reduce(|a, b| -> a + b, 0)") == 3.0


class TestPipeChannel:
  """Test the rendezvous channel directly"""

  def test_values_arrive_in_order(self):
    channel = PipeChannel()

    def produce():
      for i in range(5):
        channel.send(make_number(i))
      channel.finish()

    thread = threading.Thread(target=produce)
    thread.start()
    received = []
    while True:
      value = channel.receive()
      if value['type'] == "PipeEnd":
        break
      received.append(value['value'])
    thread.join(timeout=5)
    assert received == [0.0, 1.0, 2.0, 3.0, 4.0]

  def test_abandon_unblocks_sender(self):
    channel = PipeChannel()
    errors = []

    def produce():
      try:
        channel.send(make_number(1))
      except PipeAbandoned as e:
        errors.append(e)

    thread = threading.Thread(target=produce)
    thread.start()
    channel.abandon()
    thread.join(timeout=5)
    assert not thread.is_alive()
    assert len(errors) == 1

  def test_send_after_abandon(self):
    channel = PipeChannel()
    channel.abandon()
    with pytest.raises(PipeAbandoned):
      channel.send(make_number(1))

  def test_failure_is_reraised_once_observed(self):
    channel = PipeChannel()
    channel.fail(ValueError("boom"))
    assert channel.unobserved_failure() is not None
    with pytest.raises(ValueError):
      channel.receive()
    assert channel.unobserved_failure() is None

  def test_pull_uses_context_channel(self):
    channel = PipeChannel()
    channel.finish()
    context = make_execution_context(pull_from=channel)
    assert pipe_pull(context)['type'] == "PipeEnd"
