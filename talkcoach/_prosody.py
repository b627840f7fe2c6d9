"""Prosody sampler: classifies tone of voice from live audio frames.

Features per tick:
  rms       — root mean square of the byte waveform normalised to [-1, 1]
  centroid  — magnitude-weighted mean frequency of the byte spectrum (Hz),
              a rough pitch indicator
  hf energy — mean byte magnitude of the upper half of the spectrum

Volume and pitch trend are classified from rolling buffers; energy is taken
from the current frame only. With ``spectrum_smoothing`` set, the
spectrum is exponentially smoothed across ticks before centroid and energy
are computed. All buffers reset when the sampler restarts.
"""

import logging
from collections import deque
from dataclasses import dataclass, replace
from typing import Optional

import av
import numpy as np

from ._types import Energy, PitchTrend, ToneInfo, Volume
from .config import ProsodyThresholds

logger = logging.getLogger(__name__)

FFT_SIZE = 2048
MIN_DECIBELS = -100.0
MAX_DECIBELS = -30.0


@dataclass(frozen=True)
class AudioFrame:
    """One analysis frame in byte format.

    Attributes:
        time_domain: Waveform bytes, 128 is silence.
        frequency_bins: Spectrum magnitudes as bytes, ``fft_size / 2`` bins
            spanning 0 Hz to Nyquist.
        sample_rate: Sample rate of the source audio in Hz.
    """

    time_domain: np.ndarray
    frequency_bins: np.ndarray
    sample_rate: int = 48_000

    @classmethod
    def from_pcm(
        cls,
        samples: np.ndarray,
        sample_rate: int,
        fft_size: int = FFT_SIZE,
    ) -> "AudioFrame":
        """Build a frame from mono float PCM in [-1, 1].

        Uses the most recent ``fft_size`` samples (zero-padded on the left
        when fewer are available), a Blackman window, and maps magnitudes
        between -100 dB and -30 dB onto 0..255.
        """
        pcm = np.asarray(samples, dtype=np.float64).ravel()
        pcm = np.nan_to_num(pcm, nan=0.0, posinf=1.0, neginf=-1.0)
        if pcm.size >= fft_size:
            pcm = pcm[-fft_size:]
        else:
            pcm = np.concatenate([np.zeros(fft_size - pcm.size), pcm])

        time_domain = np.clip(np.floor(128.0 * (pcm + 1.0)), 0, 255).astype(np.uint8)

        spectrum = np.fft.rfft(pcm * np.blackman(fft_size))[: fft_size // 2]
        magnitude = np.abs(spectrum) / fft_size
        with np.errstate(divide="ignore"):
            decibels = 20.0 * np.log10(magnitude)
        scaled = 255.0 * (decibels - MIN_DECIBELS) / (MAX_DECIBELS - MIN_DECIBELS)
        frequency_bins = np.clip(np.nan_to_num(scaled, neginf=0.0), 0, 255).astype(np.uint8)

        return cls(time_domain=time_domain, frequency_bins=frequency_bins, sample_rate=sample_rate)

    @classmethod
    def from_av(cls, frame: av.AudioFrame, fft_size: int = FFT_SIZE) -> "AudioFrame":
        """Build a frame from a decoded PyAV audio frame, downmixed to mono."""
        data = frame.to_ndarray()
        if np.issubdtype(data.dtype, np.integer):
            data = data.astype(np.float64) / float(np.iinfo(data.dtype).max)
        channels = len(frame.layout.channels)
        if frame.format.is_planar:
            mono = data.mean(axis=0)
        else:
            mono = data.reshape(-1, channels).mean(axis=1)
        return cls.from_pcm(mono, frame.sample_rate, fft_size)


def frame_rms(frame: AudioFrame) -> float:
    if len(frame.time_domain) == 0:
        return 0.0
    values = (np.asarray(frame.time_domain, dtype=np.float64) - 128.0) / 128.0
    return float(np.sqrt(np.mean(values * values)))


def spectral_centroid(frame: AudioFrame) -> float:
    bins = np.asarray(frame.frequency_bins, dtype=np.float64)
    total = bins.sum()
    if total <= 0:
        return 0.0
    freqs = np.arange(bins.size) * frame.sample_rate / (2.0 * bins.size)
    return float((freqs * bins).sum() / total)


def high_frequency_energy(frame: AudioFrame) -> float:
    bins = np.asarray(frame.frequency_bins, dtype=np.float64)
    upper = bins[bins.size // 2:]
    if upper.size == 0:
        return 0.0
    return float(upper.mean())


class ProsodySampler:
    """Rolling-buffer tone classifier, ticked at a fixed cadence (~5 Hz).

    Args:
        thresholds: Empirical classification bands; tune per microphone.
    """

    def __init__(self, thresholds: Optional[ProsodyThresholds] = None) -> None:
        self._t = thresholds or ProsodyThresholds()
        self._volumes: deque[float] = deque(maxlen=self._t.buffer_size)
        self._centroids: deque[float] = deque(maxlen=self._t.buffer_size)
        self._spectrum: Optional[np.ndarray] = None
        self._tone = ToneInfo()

    @property
    def current_tone(self) -> ToneInfo:
        return self._tone

    @property
    def sample_count(self) -> int:
        return len(self._volumes)

    def reset(self) -> None:
        self._volumes.clear()
        self._centroids.clear()
        self._spectrum = None
        self._tone = ToneInfo()

    def tick(self, frame: AudioFrame) -> ToneInfo:
        rms = frame_rms(frame)
        frame = self._smooth(frame)
        centroid = spectral_centroid(frame)
        if np.isfinite(rms):
            self._volumes.append(rms)
        if np.isfinite(centroid):
            self._centroids.append(centroid)

        self._tone = ToneInfo(
            volume=self._classify_volume(),
            energy=self._classify_energy(high_frequency_energy(frame)),
            pitch_trend=self._classify_pitch_trend(),
        )
        return self._tone

    def _smooth(self, frame: AudioFrame) -> AudioFrame:
        tc = self._t.spectrum_smoothing
        if tc <= 0.0:
            return frame
        current = np.asarray(frame.frequency_bins, dtype=np.float64)
        if self._spectrum is None or self._spectrum.shape != current.shape:
            self._spectrum = current
        else:
            self._spectrum = tc * self._spectrum + (1.0 - tc) * current
        return replace(frame, frequency_bins=self._spectrum)

    def _classify_volume(self) -> Volume:
        if not self._volumes:
            return Volume.NORMAL
        avg = sum(self._volumes) / len(self._volumes)
        if avg < self._t.quiet_below_rms:
            return Volume.QUIET
        if avg > self._t.loud_above_rms:
            return Volume.LOUD
        return Volume.NORMAL

    def _classify_energy(self, hf_energy: float) -> Energy:
        if hf_energy < self._t.low_energy_below:
            return Energy.LOW
        if hf_energy > self._t.high_energy_above:
            return Energy.HIGH
        return Energy.MEDIUM

    def _classify_pitch_trend(self) -> PitchTrend:
        # Oldest two vs newest two of the most recent window.
        if len(self._centroids) < self._t.trend_window:
            return PitchTrend.FLAT
        window = list(self._centroids)[-self._t.trend_window:]
        delta = (window[-2] + window[-1]) / 2.0 - (window[0] + window[1]) / 2.0
        if delta > self._t.pitch_delta_hz:
            return PitchTrend.RISING
        if delta < -self._t.pitch_delta_hz:
            return PitchTrend.FALLING
        return PitchTrend.FLAT
