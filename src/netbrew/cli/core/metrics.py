"""
Scoring metrics: Average Precision, detection mAP and plain score averages.

Detection evaluation consumes the engine's structured detection output one
batch at a time. Every output channel holds rows of five values::

    (item_id, label, score_or_count, true_positive, false_positive)

A row whose ``item_id`` is -1 reports how many ground-truth instances of
``label`` the batch contained; every other row is one scored detection.
After the last batch each label's detections are ranked by confidence and
turned into a precision/recall curve whose area is the label's Average
Precision. A channel's mAP averages over all labels with ground-truth counts.
"""

from typing import Dict, List, Optional, Sequence, Set, Tuple
import numpy as np
from pydantic import BaseModel, Field

from .errors import ConfigurationError, ConsistencyError
from .logger import BrewLogger, get_logger
from .utils import to_numpy


AP_VERSIONS = ("11point", "MaxIntegral", "Integral")

GROUND_TRUTH_ROW = -1
ROW_WIDTH = 5
EPS = 1e-6

ScoredFlags = List[Tuple[float, int]]


class APResult(BaseModel):
    """Average Precision of one label with the curve it was computed from."""

    ap: float = Field(default=0.0, ge=0.0)
    precision: List[float] = Field(default_factory=list)
    recall: List[float] = Field(default_factory=list)


class ChannelResult(BaseModel):
    """Detection evaluation result of one output channel."""

    index: int
    name: str = ""
    average_precisions: Dict[int, float] = Field(default_factory=dict)
    missing_labels: List[int] = Field(
        default_factory=list,
        description="Labels with ground truth but no scored detections"
    )
    mean_ap: float = 0.0


class ScoreResult(BaseModel):
    """Mean of one scalar network output over all iterations."""

    name: str
    mean: float
    loss_weight: float = 0.0

    def describe(self) -> str:
        text = f"{self.name} = {self.mean:g}"
        if self.loss_weight:
            text += f" (* {self.loss_weight:g} = {self.loss_weight * self.mean:g} loss)"
        return text


def compute_ap(
    true_pos: ScoredFlags,
    num_pos: int,
    false_pos: ScoredFlags,
    ap_version: str = "11point"
) -> APResult:
    """
    Compute Average Precision from scored detections.

    Args:
        true_pos: (score, is_true_positive) per detection
        num_pos: Number of ground-truth instances
        false_pos: (score, is_false_positive) per detection, parallel to true_pos
        ap_version: "11point" (VOC2007), "MaxIntegral" (VOC2012/ILSVRC)
                    or "Integral" (natural integral)

    Returns:
        APResult with the ranked precision/recall curve

    Raises:
        ConfigurationError: Unknown ap_version
        ConsistencyError: true_pos and false_pos are not parallel, or a
                          detection is not exactly one of true or false positive
    """
    if ap_version not in AP_VERSIONS:
        raise ConfigurationError(f"Unknown ap_version: {ap_version}")
    if len(true_pos) != len(false_pos):
        raise ConsistencyError("true_pos must have the same size as false_pos")
    # Every scored detection is exactly one of true or false positive
    for (tp_score, tp), (fp_score, fp) in zip(true_pos, false_pos):
        if tp_score != fp_score or tp != 1 - fp:
            raise ConsistencyError(
                f"Inconsistent detection: score {tp_score:g} tp={tp}, score {fp_score:g} fp={fp}"
            )
    if not true_pos or num_pos == 0:
        return APResult()

    # Rank by descending score; ties are broken on the flags so that the
    # order in which batches arrived never changes the curve.
    ranked = sorted(
        zip(true_pos, false_pos),
        key=lambda pair: (-pair[0][0], -pair[0][1], pair[1][1])
    )
    tp = np.array([t[1] for t, _ in ranked], dtype=np.float64)
    fp = np.array([f[1] for _, f in ranked], dtype=np.float64)

    tp_cumsum = np.cumsum(tp)
    fp_cumsum = np.cumsum(fp)
    denom = tp_cumsum + fp_cumsum
    prec = np.divide(tp_cumsum, denom, out=np.zeros_like(tp_cumsum), where=denom > 0)
    if tp_cumsum[-1] > num_pos:
        raise ConsistencyError(
            f"{int(tp_cumsum[-1])} true positives exceed {num_pos} ground-truth instances"
        )
    rec = tp_cumsum / float(num_pos)

    if ap_version == "11point":
        ap = _ap_11point(prec, rec)
    elif ap_version == "MaxIntegral":
        ap = _ap_max_integral(prec, rec)
    else:
        ap = _ap_integral(prec, rec)

    return APResult(ap=float(ap), precision=prec.tolist(), recall=rec.tolist())


def _ap_11point(prec: np.ndarray, rec: np.ndarray) -> float:
    max_precs = []
    for j in range(11):
        above = prec[rec >= j / 10.0]
        max_precs.append(float(above.max()) if above.size else 0.0)
    return sum(max_precs) / 11.0


def _ap_max_integral(prec: np.ndarray, rec: np.ndarray) -> float:
    mrec = np.concatenate(([0.0], rec, [1.0]))
    mpre = np.concatenate(([0.0], prec, [0.0]))

    # Precision envelope
    for i in range(len(mpre) - 1, 0, -1):
        if mpre[i - 1] < mpre[i]:
            mpre[i - 1] = mpre[i]

    changed = np.where(np.abs(mrec[1:] - mrec[:-1]) > EPS)[0] + 1
    return float(np.sum((mrec[changed] - mrec[changed - 1]) * mpre[changed]))


def _ap_integral(prec: np.ndarray, rec: np.ndarray) -> float:
    drec = np.abs(np.diff(np.concatenate(([0.0], rec))))
    return float(np.sum(np.where(drec > EPS, prec * drec, 0.0)))


class DetectionAccumulator:
    """
    Streams per-batch detection rows into per-channel, per-label tables.

    Tables only grow; ``evaluate`` reads them once at the end.
    """

    def __init__(self, logger: Optional[BrewLogger] = None):
        self.logger = logger or get_logger()
        self.true_pos: Dict[int, Dict[int, ScoredFlags]] = {}
        self.false_pos: Dict[int, Dict[int, ScoredFlags]] = {}
        self.num_pos: Dict[int, Dict[int, int]] = {}
        self.channels: Set[int] = set()
        self.batches = 0

    def add_batch(self, outputs: Sequence[object]) -> None:
        """
        Accumulate one forward pass worth of detection output.

        Args:
            outputs: One blob per output channel, each holding rows of 5 values
        """
        for channel, blob in enumerate(outputs):
            self.channels.add(channel)
            for row in self._rows(channel, blob):
                self.add_row(channel, *row)
        self.batches += 1

    def add_row(
        self,
        channel: int,
        item_id: float,
        label: float,
        score: float,
        tp: float,
        fp: float
    ) -> None:
        """Accumulate a single detection or ground-truth-count row."""
        item_id = int(item_id)
        label = int(label)

        if item_id == GROUND_TRUTH_ROW:
            counts = self.num_pos.setdefault(channel, {})
            counts[label] = counts.get(label, 0) + int(score)
            return

        tp = int(tp)
        fp = int(fp)
        if tp == 0 and fp == 0:
            # Matched to a ground-truth region excluded from evaluation
            return

        score = float(score)
        self.true_pos.setdefault(channel, {}).setdefault(label, []).append((score, tp))
        self.false_pos.setdefault(channel, {}).setdefault(label, []).append((score, fp))

    def evaluate(
        self,
        ap_version: str = "11point",
        names: Optional[Sequence[str]] = None
    ) -> List[ChannelResult]:
        """
        Compute per-label AP and per-channel mAP.

        Args:
            ap_version: AP interpolation method
            names: Output channel names, for reporting

        Returns:
            One ChannelResult per channel, in channel order

        Raises:
            ConsistencyError: A channel is missing from one of the tables
        """
        if ap_version not in AP_VERSIONS:
            raise ConfigurationError(f"Unknown ap_version: {ap_version}")

        results = []
        for channel in sorted(self.channels):
            for table, kind in (
                (self.true_pos, "true_pos"),
                (self.false_pos, "false_pos"),
                (self.num_pos, "num_pos"),
            ):
                if channel not in table:
                    raise ConsistencyError(f"Missing output_blob {kind}: {channel}")

            true_pos = self.true_pos[channel]
            false_pos = self.false_pos[channel]
            num_pos = self.num_pos[channel]

            result = ChannelResult(
                index=channel,
                name=names[channel] if names and channel < len(names) else str(channel)
            )
            for label in sorted(num_pos):
                if label not in true_pos:
                    self.logger.warning(f"Missing true_pos for label: {label}")
                    result.missing_labels.append(label)
                    continue
                if label not in false_pos:
                    self.logger.warning(f"Missing false_pos for label: {label}")
                    result.missing_labels.append(label)
                    continue
                ap = compute_ap(true_pos[label], num_pos[label], false_pos[label], ap_version)
                result.average_precisions[label] = ap.ap

            # Labels without detections count as AP 0 in the denominator
            if num_pos:
                result.mean_ap = sum(result.average_precisions.values()) / len(num_pos)
            results.append(result)

        return results

    def _rows(self, channel: int, blob: object) -> np.ndarray:
        data = to_numpy(blob)
        if data.size % ROW_WIDTH != 0:
            raise ConsistencyError(
                f"Output {channel} has {data.size} values, not a multiple of {ROW_WIDTH}"
            )
        return data.reshape(-1, ROW_WIDTH)


class ScoreAccumulator:
    """
    Averages every scalar of every network output over the scoring run.

    The first batch fixes the layout; later batches add element-wise.
    """

    def __init__(
        self,
        output_names: Sequence[str],
        loss_weights: Optional[Sequence[float]] = None,
        logger: Optional[BrewLogger] = None
    ):
        self.output_names = list(output_names)
        self.loss_weights = list(loss_weights or [])
        self.logger = logger or get_logger()
        self.scores: List[float] = []
        self.score_output_ids: List[int] = []
        self.loss = 0.0
        self.batches = 0

    def add_batch(self, outputs: Sequence[object], loss: float = 0.0) -> None:
        """
        Accumulate one forward pass.

        Args:
            outputs: One blob per network output
            loss: Loss reported by the forward pass
        """
        self.loss += float(loss)
        idx = 0
        for j, blob in enumerate(outputs):
            name = self._name(j)
            for score in to_numpy(blob).ravel():
                score = float(score)
                if self.batches == 0:
                    self.scores.append(score)
                    self.score_output_ids.append(j)
                elif idx < len(self.scores):
                    self.scores[idx] += score
                else:
                    raise ConsistencyError(
                        f"Batch {self.batches} produced more values than the first batch"
                    )
                idx += 1
                self.logger.info(f"Batch {self.batches}, {name} = {score:g}")
        self.batches += 1

    def mean_loss(self) -> float:
        return self.loss / self.batches if self.batches else 0.0

    def results(self) -> List[ScoreResult]:
        """Mean of every accumulated value, with its loss weight."""
        if not self.batches:
            return []
        results = []
        for score, output_id in zip(self.scores, self.score_output_ids):
            weight = self.loss_weights[output_id] if output_id < len(self.loss_weights) else 0.0
            results.append(ScoreResult(
                name=self._name(output_id),
                mean=score / self.batches,
                loss_weight=weight
            ))
        return results

    def _name(self, output_id: int) -> str:
        if output_id < len(self.output_names):
            return self.output_names[output_id]
        return f"output_{output_id}"
