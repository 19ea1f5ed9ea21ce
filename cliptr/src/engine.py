"""
Speech-to-text worker using OpenAI Whisper.

Run as a child process by the transcription coordinator::

    python -m cliptr.src.engine --audio A.wav --output A.json --model base

Writes ``{text, segments: [{id, start, end, text}], language, model}`` to the
output file. Exits 1 with the error on stderr if Whisper fails.
"""

import json
import os
import sys
from typing import Optional

import click


class TranscriptionError(Exception):
    """Exception raised when transcription fails."""
    pass


class Transcriber:
    """
    Speech-to-text transcriber using OpenAI Whisper.

    The model is loaded lazily so importing this module does not require
    Whisper to be installed.
    """

    def __init__(self, model_name: str = "base", device: Optional[str] = None):
        """
        Args:
            model_name: Whisper model to use (tiny, base, small, medium, large).
            device: Device to run on ("cuda", "cpu", or None for auto-detect).
        """
        self.model_name = model_name
        self.device = device
        self.model = None

    def load_model(self) -> None:
        """Load the Whisper model into memory."""
        if self.model is not None:
            return

        try:
            import whisper
            import torch
        except ImportError:
            raise TranscriptionError(
                "OpenAI Whisper not installed. Install with: pip install openai-whisper"
            )

        if self.device is None:
            self.device = "cuda" if torch.cuda.is_available() else "cpu"

        print(f"Loading Whisper model '{self.model_name}' on {self.device}...", file=sys.stderr)
        try:
            self.model = whisper.load_model(self.model_name, device=self.device)
        except Exception as e:
            raise TranscriptionError(f"Failed to load Whisper model: {e}")

    def transcribe(self, audio_path: str, language: Optional[str] = None) -> dict:
        """
        Transcribe an audio file.

        Returns:
            Dict with ``text``, ``segments``, ``language`` and ``model``.

        Raises:
            TranscriptionError: If the file is missing or Whisper fails.
        """
        if not os.path.exists(audio_path):
            raise TranscriptionError(f"Audio file not found: {audio_path}")

        self.load_model()

        try:
            result = self.model.transcribe(audio_path, language=language, verbose=False)
        except Exception as e:
            raise TranscriptionError(f"Transcription failed: {e}")

        segments = [
            {
                "id": i,
                "start": float(seg["start"]),
                "end": float(seg["end"]),
                "text": seg["text"].strip(),
            }
            for i, seg in enumerate(result.get("segments", []))
        ]
        return {
            "text": result.get("text", "").strip(),
            "segments": segments,
            "language": result.get("language"),
            "model": self.model_name,
        }


@click.command()
@click.option("--audio", "audio_path", required=True, type=click.Path(), help="16 kHz mono WAV input.")
@click.option("--output", "output_path", required=True, type=click.Path(), help="JSON file to write.")
@click.option("--model", default="base", show_default=True, help="Whisper model size.")
@click.option("--language", default=None, help="Language code; omit to auto-detect.")
@click.option("--device", default=None, help="cuda or cpu; omit to auto-detect.")
def main(audio_path, output_path, model, language, device):
    """Transcribe AUDIO with Whisper and write the result as JSON."""
    transcriber = Transcriber(model_name=model, device=device)
    try:
        result = transcriber.transcribe(audio_path, language=language)
    except TranscriptionError as e:
        click.echo(f"Error during transcription: {e}", err=True)
        sys.exit(1)

    with open(output_path, "w", encoding="utf-8") as f:
        json.dump(result, f, indent=2)
    click.echo(f"Transcription completed: {len(result['segments'])} segments")


if __name__ == "__main__":
    main()
