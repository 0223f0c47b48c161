"""
Nemo Pipe Scheduler
Runs both sides of `|` as pykka actors connected by a rendezvous channel
"""

from typing import Any, Callable, Dict, Optional
import logging
import threading
import uuid
import pykka

from error_handling import NemoRuntimeError, TYPE_MISMATCH
from utilities import (
  make_unit,
  make_pipe_end,
  is_pipe_end,
  is_return,
  no_active_pipe_error,
)

logger = logging.getLogger(__name__)


# ============================================================================
# EXECUTION CONTEXT
# ============================================================================

def make_execution_context(push_to: Optional['PipeChannel'] = None,
                           pull_from: Optional['PipeChannel'] = None) -> Dict:
  """Create the per-task context routing push/pull to the innermost pipe"""
  return {
      'push_to': push_to,
      'pull_from': pull_from
  }


# ============================================================================
# CHANNEL
# ============================================================================

class PipeAbandoned(Exception):
  """Raised inside a producer whose consumer has stopped pulling"""


class PipeChannel:
  """
  Unbuffered rendezvous between one producer and one consumer

  At most one value is in flight. `send` returns only after the consumer has
  taken the value. Once the producer finishes, every further `receive`
  returns the PipeEnd sentinel.
  """

  def __init__(self, name: str = "pipe"):
    self.name = name
    self._cond = threading.Condition()
    self._slot: Optional[Dict] = None
    self._has_value = False
    self._finished = False
    self._abandoned = False
    self._failure: Optional[BaseException] = None
    self._failure_observed = False

  def send(self, value: Dict) -> None:
    """Block until the consumer receives value; raise PipeAbandoned if it never will"""
    with self._cond:
      while self._has_value and not self._abandoned:
        self._cond.wait()
      if self._abandoned:
        raise PipeAbandoned(self.name)

      self._slot = value
      self._has_value = True
      self._cond.notify_all()

      while self._has_value and not self._abandoned:
        self._cond.wait()
      if self._has_value:
        # consumer left before taking it
        self._slot = None
        self._has_value = False
        raise PipeAbandoned(self.name)

  def receive(self) -> Dict:
    """Block until a value, the sentinel or a producer failure is available"""
    with self._cond:
      while True:
        if self._has_value:
          value = self._slot
          self._slot = None
          self._has_value = False
          self._cond.notify_all()
          return value
        if self._failure is not None:
          self._failure_observed = True
          raise self._failure
        if self._finished:
          return make_pipe_end()
        self._cond.wait()

  def finish(self) -> None:
    with self._cond:
      self._finished = True
      self._cond.notify_all()

  def fail(self, error: BaseException) -> None:
    """Record a producer failure; the consumer's next receive raises it"""
    with self._cond:
      self._failure = error
      self._finished = True
      self._cond.notify_all()

  def abandon(self) -> None:
    with self._cond:
      self._abandoned = True
      self._cond.notify_all()

  def unobserved_failure(self) -> Optional[BaseException]:
    with self._cond:
      if self._failure is not None and not self._failure_observed:
        return self._failure
      return None


# ============================================================================
# STAGE ACTORS (Using Pykka)
# ============================================================================

class StageRegistry:
  """Registry of live pipe stage actors"""

  def __init__(self):
    self.stages: Dict[str, pykka.ActorRef] = {}
    self._lock = threading.Lock()

  def register(self, stage_id: str, actor_ref: pykka.ActorRef):
    """Register a stage actor"""
    with self._lock:
      self.stages[stage_id] = actor_ref

  def unregister(self, stage_id: str):
    with self._lock:
      self.stages.pop(stage_id, None)

  def __len__(self) -> int:
    with self._lock:
      return len(self.stages)

  def terminate_all(self):
    """Ask every live stage actor to stop"""
    with self._lock:
      refs = list(self.stages.items())
      self.stages.clear()
    for stage_id, actor_ref in refs:
      logger.debug("stopping pipe stage %s", stage_id)
      actor_ref.stop(block=False)


# Global stage registry
_stage_registry = StageRegistry()


def get_stage_registry() -> StageRegistry:
  return _stage_registry


def shutdown_stages():
  """Stop all stage actors still alive (used at interpreter exit)"""
  _stage_registry.terminate_all()


class PipeStageActor(pykka.ThreadingActor):
  """Actor that evaluates one side of a pipe"""

  use_daemon_thread = True

  def __init__(self, stage_id: str, run_stage: Callable[[], Any]):
    super().__init__()
    self.stage_id = stage_id
    self.run_stage = run_stage

  def on_receive(self, message):
    """Run the stage when asked; the result is the ask future's value"""
    if message.get('command') == 'run':
      logger.debug("pipe stage %s started", self.stage_id)
      result = self.run_stage()
      logger.debug("pipe stage %s completed", self.stage_id)
      return result
    return None


# ============================================================================
# PUSH / PULL
# ============================================================================

def pipe_push(value: Dict, context: Optional[Dict]) -> Dict:
  """Send value into the pipe this task produces for"""
  channel = context.get('push_to') if context else None
  if channel is None:
    raise no_active_pipe_error("push")
  if is_pipe_end(value):
    raise NemoRuntimeError(TYPE_MISMATCH, "Cannot push the 'finished' sentinel")
  channel.send(value)
  return make_unit()


def pipe_pull(context: Optional[Dict]) -> Dict:
  """Receive the next value from the pipe this task consumes"""
  channel = context.get('pull_from') if context else None
  if channel is None:
    raise no_active_pipe_error("pull")
  return channel.receive()


# ============================================================================
# PIPE EVALUATION
# ============================================================================

def run_pipe(left: Dict, right: Dict, env: Dict, context: Optional[Dict],
             evaluate: Callable[[Dict, Dict, Dict], Dict]) -> Dict:
  """
  Evaluate `left | right`

  The producer inherits the enclosing `pull_from` and the consumer inherits
  the enclosing `push_to`, so chained and nested pipes compose. Only the
  consumer is waited for. A producer failure already recorded when the
  consumer finishes is raised even if the consumer never pulled it.

  Args:
    left: Producer expression
    right: Consumer expression
    env: Environment both stages evaluate in
    context: Enclosing execution context
    evaluate: Evaluation function (node, env, context) -> value

  Returns:
    The consumer's value

  Raises:
    NemoRuntimeError from either stage
  """
  if context is None:
    context = make_execution_context()

  stage_id = uuid.uuid4().hex[:8]
  channel = PipeChannel(f"pipe-{stage_id}")
  producer_context = {**context, 'push_to': channel}
  consumer_context = {**context, 'pull_from': channel}

  def run_producer():
    try:
      evaluate(left, env, producer_context)
    except PipeAbandoned:
      logger.debug("pipe %s producer abandoned by its consumer", stage_id)
    except Exception as e:
      logger.debug("pipe %s producer failed: %s", stage_id, e)
      channel.fail(e)
    finally:
      channel.finish()

  def run_consumer():
    result = evaluate(right, env, consumer_context)
    if is_return(result):
      result = result['value']
    return result

  producer_id, consumer_id = f"{stage_id}.producer", f"{stage_id}.consumer"
  producer = PipeStageActor.start(producer_id, run_producer)
  consumer = PipeStageActor.start(consumer_id, run_consumer)
  _stage_registry.register(producer_id, producer)
  _stage_registry.register(consumer_id, consumer)

  try:
    producer.ask({'command': 'run'}, block=False)
    consumer_future = consumer.ask({'command': 'run'}, block=False)
    result = consumer_future.get()
  finally:
    channel.abandon()
    for actor_id, actor_ref in ((producer_id, producer), (consumer_id, consumer)):
      actor_ref.stop(block=False)
      _stage_registry.unregister(actor_id)

  failure = channel.unobserved_failure()
  if failure is not None:
    logger.debug("pipe %s: raising producer error the consumer never pulled: %s", stage_id, failure)
    raise failure

  return result
