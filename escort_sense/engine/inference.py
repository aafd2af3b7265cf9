import logging
import os
from dataclasses import dataclass, field

import numpy as np
import tensorflow as tf

from ..config import (
    MODEL_PATH, LABELS_PATH, CLASS_LABELS, DISTRESS_LABELS, DISTRESS_THRESHOLD, PCM_SCALE
)
from ..features.mel_spectrogram import MelSpectrogram, to_model_input

logger = logging.getLogger(__name__)


def _quantize(values, scale, zero_point):
    """float32 -> int8 with the tensor's affine parameters"""
    return np.clip(np.round(values / scale + zero_point), -128, 127).astype(np.int8)


def _dequantize(values, scale, zero_point):
    return (values.astype(np.float32) - zero_point) * scale


@dataclass(frozen=True)
class ClassificationResult:
    label: str
    confidence: float
    all_scores: dict = field(default_factory=dict)
    is_distress: bool = False


class DistressClassifier:
    """
    Adapter around the external TFLite distress-keyword model.
    Shapes mel-spectrogram images to the model's input tensor and
    handles input/output quantization/dequantization.
    """
    def __init__(self, model_path=MODEL_PATH, labels=CLASS_LABELS,
                 threshold=DISTRESS_THRESHOLD, feature_extractor=None):
        self.model_path = model_path
        self.labels = list(labels)
        self.threshold = threshold
        self.feature_extractor = feature_extractor or MelSpectrogram()
        self.interpreter = None
        self.input_details = None
        self.output_details = None
        self.is_quantized_input = False
        self.is_quantized_output = False

    def load_model(self):
        """
        Read the .tflite flatbuffer and allocate the interpreter tensors.
        """
        if not os.path.exists(self.model_path):
            raise FileNotFoundError(f"Model file not found: {self.model_path}")

        with open(self.model_path, 'rb') as f:
            self.interpreter = tf.lite.Interpreter(model_content=f.read())
        self.interpreter.allocate_tensors()

        self.input_details = self.interpreter.get_input_details()
        self.output_details = self.interpreter.get_output_details()
        input_tensor, output_tensor = self.input_details[0], self.output_details[0]
        self.is_quantized_input = input_tensor['dtype'] == np.int8
        self.is_quantized_output = output_tensor['dtype'] == np.int8

        logger.info(f"Distress model ready: {self.model_path} "
                    f"(input {input_tensor['shape']}, output {output_tensor['shape']}, "
                    f"int8={self.is_quantized_input})")

    def load_labels(self, labels_path=LABELS_PATH):
        """
        Replace the class labels from a newline-separated file, if present.
        """
        if not os.path.exists(labels_path):
            logger.info(f"No labels file at {labels_path}, using default labels")
            return self.labels

        with open(labels_path, 'r', encoding='utf-8') as f:
            labels = [line.strip() for line in f if line.strip()]

        if labels:
            self.labels = labels
            logger.info(f"Loaded {len(labels)} labels: {labels}")
        return self.labels

    def is_ready(self):
        return self.interpreter is not None

    def close(self):
        self.interpreter = None
        self.input_details = None
        self.output_details = None

    def classify(self, audio_samples):
        """
        Classify one audio window.

        Args:
            audio_samples: float samples in [-1, 1], or int16 PCM

        Returns:
            ClassificationResult, or None when the window is too short
            to produce a spectrogram (skip this tick)
        """
        if self.interpreter is None:
            raise RuntimeError("Model not loaded. Call load_model() first.")

        audio = np.asarray(audio_samples)
        if audio.dtype == np.int16:
            audio = audio.astype(np.float32) / PCM_SCALE

        image = self.feature_extractor.compute_image(audio)
        if image.size == 0:
            logger.debug("Empty mel spectrogram, skipping classification")
            return None

        input_shape = self.input_details[0]['shape']
        scores = self.predict(to_model_input(image, input_shape))
        return self._to_result(scores)

    def predict(self, input_data):
        """
        Run inference on a prepared input tensor.
        Returns the per-class scores with the batch dimension removed.
        """
        if self.interpreter is None:
            raise RuntimeError("Model not loaded. Call load_model() first.")

        input_tensor, output_tensor = self.input_details[0], self.output_details[0]
        features = np.asarray(input_data, dtype=np.float32)
        if self.is_quantized_input:
            features = _quantize(features, *input_tensor['quantization'])
        else:
            features = features.astype(input_tensor['dtype'])

        self.interpreter.set_tensor(input_tensor['index'], features)
        self.interpreter.invoke()
        scores = self.interpreter.get_tensor(output_tensor['index'])

        if self.is_quantized_output:
            scores = _dequantize(scores, *output_tensor['quantization'])

        return np.asarray(scores, dtype=np.float32).reshape(-1)

    def _to_result(self, scores):
        all_scores = {}
        for i, score in enumerate(scores):
            label = self.labels[i] if i < len(self.labels) else f"class_{i}"
            all_scores[label] = float(score)

        top_index = int(np.argmax(scores))
        top_label = self.labels[top_index] if top_index < len(self.labels) else "unknown"
        confidence = float(scores[top_index])

        return ClassificationResult(
            label=top_label,
            confidence=confidence,
            all_scores=all_scores,
            is_distress=top_label in DISTRESS_LABELS and confidence >= self.threshold,
        )

    def get_model_info(self):
        """
        Get model information for monitoring.
        """
        if self.interpreter is None:
            return {"status": "Model not loaded"}

        return {
            "model_path": self.model_path,
            "input_shape": [int(d) for d in self.input_details[0]['shape']],
            "output_shape": [int(d) for d in self.output_details[0]['shape']],
            "input_dtype": str(self.input_details[0]['dtype']),
            "output_dtype": str(self.output_details[0]['dtype']),
            "quantized": self.is_quantized_input,
            "labels": list(self.labels),
        }
