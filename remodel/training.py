"""
===============
RemodelTraining
===============

Client side of remote training.

The engine owns the optimizer loop; this module asks it to plan the batches
of one epoch, then drives that plan in chunks of `log_interval` batches so
losses and pacing can be reported between round trips.
"""

import logging
import math
import time
from typing import Any, Callable, Optional

from remodel.tensor import as_tensor

logger_training = logging.getLogger("RemodelTraining")


# ----------------------------------------------------------------------
def format_remaining(seconds: float) -> str:
    """
    Format an estimated remaining time like ``'2m5s'`` or ``'42s'``.
    """
    seconds = max(int(seconds), 0)
    if seconds > 60:
        return f"{seconds // 60}m{seconds % 60}s"
    return f"{seconds}s"


# ----------------------------------------------------------------------
def _is_nan(value: Optional[float]) -> bool:
    """"""
    return value is not None and math.isnan(value)


# ----------------------------------------------------------------------
async def fit(
    model: Any,
    input: Any,
    target: Any,
    criterion: Any,
    optim: Any,
    batch_size: int,
    iters: int = 15,
    log_interval: int = 200,
    verbose: bool = True,
    sink: Callable[[str], Any] = print,
) -> Optional[float]:
    """
    Train `model` in the engine.

    Parameters
    ----------
    model : Model
        The model to train.
    input : Tensor or array_like
        Training inputs; raw data is wrapped into a `FloatTensor` first.
    target : Tensor or array_like
        Training targets; raw data is wrapped into a `FloatTensor` first.
    criterion : Model
        The loss function.
    optim : Optimizer
        The optimizer updating the parameters of `model`.
    batch_size : int
        Number of samples per batch.
    iters : int, optional
        Number of passes over the batch plan. Defaults to 15.
    log_interval : int, optional
        Number of batches run per round trip. Defaults to 200.
    verbose : bool, optional
        Write progress lines to `sink`. Defaults to True.
    sink : Callable[[str], Any], optional
        Output side-channel for progress. Defaults to `print`.

    Returns
    -------
    float or None
        The last loss adopted, or None if the engine never reported one.

    Raises
    ------
    ValueError
        If `log_interval` is not positive.

    Notes
    -----
    The engine answers a chunk with ``None`` when it has no new loss; the
    tracked loss is kept in that case. A NaN loss ends the current pass and
    then the whole training; it is reported, not raised.
    """
    if log_interval < 1:
        raise ValueError(f"log_interval must be a positive number of batches, got {log_interval!r}")

    await model.wait_ready()
    transport = model.transport
    input = as_tensor(transport, input)
    target = as_tensor(transport, target)

    params = [
        await input.wait_ready(),
        await target.wait_ready(),
        await criterion.wait_ready(),
        await optim.wait_ready(),
        batch_size,
    ]
    num_batches = await model.call('prepare_to_fit', params, 'int')
    logger_training.info(f"{model.kind}_{model.id}: Number of Batches: {num_batches}")
    if verbose:
        sink(f"Number of Batches: {num_batches}")

    start = time.monotonic()
    loss = None
    for iter_ in range(iters):
        iter_start = time.monotonic()

        for log_i in range(0, num_batches, log_interval):
            prev_loss = loss
            end = min(log_i + log_interval, num_batches)
            _loss = await model.call('fit', [log_i, end, 1], 'float')
            if _loss is not None:
                loss = _loss

            if _is_nan(loss) or _is_nan(prev_loss):
                logger_training.warning(f"{model.kind}_{model.id}: NaN loss at iteration {iter_ + 1}, batch {end}.")
                if verbose:
                    sink(f"Iteration {iter_ + 1}/{iters}: loss is NaN, stopping.")
                break

            elapsed = time.monotonic() - iter_start
            pace = elapsed / end
            remaining = format_remaining((num_batches - end) * pace)
            trend = '+' if (prev_loss is not None and loss is not None and loss > prev_loss) else '-'
            logger_training.debug(f"{model.kind}_{model.id}: batches {log_i}-{end} loss {loss}.")
            if verbose:
                sink(f"Iteration {iter_ + 1}/{iters} [{end}/{num_batches}] loss: {loss} ({trend}) ETA: {remaining}")

        elapsed = time.monotonic() - start
        pace = elapsed / (iter_ + 1)
        remaining = format_remaining((iters - iter_ - 1) * pace)
        if verbose:
            sink(f"Iteration {iter_ + 1}/{iters} done, loss: {loss}, remaining: {remaining}")

        if _is_nan(loss):
            break

    if verbose:
        sink(f"Training done in {format_remaining(time.monotonic() - start)}, loss: {loss}")
    return loss
