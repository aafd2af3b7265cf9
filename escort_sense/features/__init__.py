from .mel_spectrogram import MelSpectrogram, hz_to_mel, mel_to_hz, to_model_input
