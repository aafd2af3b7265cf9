"""
Mel-spectrogram feature extraction for distress audio classification
Converts raw audio windows into normalized log-mel "images" for a CNN

Pipeline: Raw Audio -> Hann-windowed frames -> DFT magnitude -> Power
          -> Mel filter banks -> Log scaling -> Min-max normalization
"""

import logging

import numpy as np
import librosa

from ..config import (
    SAMPLE_RATE, N_FFT, HOP_LENGTH, N_MELS,
    F_MIN, F_MAX, LOG_FLOOR, DFT_METHOD
)
from ..exceptions import InvalidInput
from ..primitives import dft_magnitude, hann_window

logger = logging.getLogger(__name__)


def hz_to_mel(hz):
    """HTK mel scale: 2595 * log10(1 + hz / 700)"""
    return librosa.hz_to_mel(hz, htk=True)


def mel_to_hz(mel):
    """Inverse HTK mel scale: 700 * (10^(mel / 2595) - 1)"""
    return librosa.mel_to_hz(mel, htk=True)


def to_model_input(feature_map, input_shape):
    """
    Shape a feature map for the classifier's input tensor.

    The map is flattened row-major ([time][melBin]), then truncated or
    zero-padded to the tensor size and reshaped.

    Args:
        feature_map: 2-D array [frame][melBin]
        input_shape: target tensor shape, e.g. (1, 61, 40, 1)

    Returns:
        float32 numpy array of shape input_shape
    """
    input_shape = tuple(int(d) for d in input_shape)
    size = int(np.prod(input_shape))

    flat = np.asarray(feature_map, dtype=np.float32).ravel()
    tensor = np.zeros(size, dtype=np.float32)
    count = min(size, flat.size)
    tensor[:count] = flat[:count]

    return tensor.reshape(input_shape)


class MelSpectrogram:
    """
    Log-mel spectrogram extractor.

    Stateless apart from the precomputed Hann window and filter bank, which
    are read-only after construction, so one instance can be shared by
    multiple audio worker threads.
    """

    def __init__(self, sample_rate=SAMPLE_RATE, n_fft=N_FFT, hop_length=HOP_LENGTH,
                 n_mels=N_MELS, f_min=F_MIN, f_max=F_MAX, dft_method=DFT_METHOD):
        if n_fft < 2 or hop_length < 1 or n_mels < 1:
            raise InvalidInput(
                f"Invalid spectrogram geometry (n_fft={n_fft}, hop_length={hop_length}, n_mels={n_mels})"
            )
        if not 0 <= f_min < f_max:
            raise InvalidInput(f"Invalid frequency range: {f_min}..{f_max} Hz")

        self.sample_rate = sample_rate
        self.n_fft = n_fft
        self.hop_length = hop_length
        self.n_mels = n_mels
        self.f_min = f_min
        self.f_max = f_max
        self.dft_method = dft_method

        # Pre-compute window and filter bank
        self.window = hann_window(self.n_fft)
        self.mel_filterbank = self._create_mel_filterbank()

        logger.info(f"Mel spectrogram initialized (n_fft={n_fft}, hop={hop_length}, "
                    f"n_mels={n_mels}, dft={dft_method})")

    def num_frames(self, num_samples):
        """
        Number of frames produced for num_samples of audio.
        Inputs just shorter than n_fft still give one zero-padded frame.
        """
        return int((num_samples - self.n_fft) / self.hop_length) + 1

    def compute(self, audio_samples):
        """
        Convert audio samples to a log-mel spectrogram.

        Args:
            audio_samples: 1-D sequence of PCM samples normalized to [-1, 1]

        Returns:
            float32 numpy array [time][mel_bins] in dB; shape (0, n_mels) when
            the input is too short to classify
        """
        audio = self._validate(audio_samples)

        num_frames = self.num_frames(audio.size)
        if num_frames <= 0:
            logger.debug(f"Audio too short for a frame ({audio.size} samples)")
            return np.zeros((0, self.n_mels), dtype=np.float32)

        # 1. Framing + Hann window
        frames = self._frame(audio, num_frames) * self.window

        # 2. Magnitude spectrum
        magnitude = dft_magnitude(frames, method=self.dft_method)

        # 3. Power + mel projection
        mel_spec = (magnitude ** 2) @ self.mel_filterbank.T

        # 4. Log scaling: 10 * log10(max(value, 1e-10))
        log_mel = librosa.power_to_db(mel_spec, ref=1.0, amin=LOG_FLOOR, top_db=None)

        return log_mel.astype(np.float32)

    def normalize(self, mel_spectrogram):
        """
        Rescale a spectrogram to [0, 1] using its global min and max.
        Constant (e.g. silent) or empty maps are returned unchanged.
        """
        mel_spectrogram = np.asarray(mel_spectrogram, dtype=np.float32)
        if mel_spectrogram.size == 0:
            return mel_spectrogram

        min_val = mel_spectrogram.min()
        max_val = mel_spectrogram.max()
        if max_val == min_val:
            return mel_spectrogram

        return ((mel_spectrogram - min_val) / (max_val - min_val)).astype(np.float32)

    def compute_image(self, audio_samples):
        """
        Normalized mel-spectrogram image ready for the CNN
        """
        return self.normalize(self.compute(audio_samples))

    def _validate(self, audio_samples):
        audio = np.asarray(audio_samples, dtype=np.float32)
        if audio.ndim != 1:
            raise InvalidInput(f"Expected mono 1-D audio, got shape {audio.shape}")
        if not np.all(np.isfinite(audio)):
            raise InvalidInput("Audio contains NaN or infinite samples")
        return audio

    def _frame(self, audio, num_frames):
        """
        Slice overlapping frames, zero-padding the tail so the final frame is complete.
        """
        needed = (num_frames - 1) * self.hop_length + self.n_fft
        if audio.size < needed:
            audio = np.pad(audio, (0, needed - audio.size), mode="constant")
        else:
            audio = audio[:needed]

        # librosa frames along the last axis: (n_fft, num_frames)
        frames = librosa.util.frame(audio, frame_length=self.n_fft, hop_length=self.hop_length)
        return np.ascontiguousarray(frames.T)

    def _create_mel_filterbank(self):
        """
        Triangular filters spaced linearly on the mel scale.

        Each filter spans three boundary bins (left, center, right) with
        linear rising/falling ramps; neighbours share boundary bins.
        """
        num_fft_bins = self.n_fft // 2 + 1

        mel_min = hz_to_mel(self.f_min)
        mel_max = hz_to_mel(self.f_max)
        mel_points = mel_min + np.arange(self.n_mels + 2) * (mel_max - mel_min) / (self.n_mels + 1)
        hz_points = mel_to_hz(mel_points)

        bin_points = [
            min(max(int((self.n_fft + 1) * hz / self.sample_rate), 0), num_fft_bins - 1)
            for hz in hz_points
        ]

        filterbank = np.zeros((self.n_mels, num_fft_bins), dtype=np.float32)
        for i in range(self.n_mels):
            left, center, right = bin_points[i], bin_points[i + 1], bin_points[i + 2]

            # Rising slope
            if center != left:
                for j in range(left, center):
                    filterbank[i, j] = (j - left) / (center - left)

            # Falling slope
            if right != center:
                for j in range(center, right):
                    filterbank[i, j] = (right - j) / (right - center)

        return filterbank
