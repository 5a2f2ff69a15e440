"""
Prompt templates for the inference service.

Prompts are rendered as raw turn-delimited text, the format chat-tuned
Gemma-family models are trained on, so no tokenizer chat template is needed.
"""

CLINICAL_NOTES_INSTRUCTION = (
    "Generate clinical notes from the following doctor-patient conversation transcription. "
    "Include relevant sections like Chief Complaint, History of Present Illness, Assessment, and Plan."
)


class PromptTemplateGenerator:
    """Renders user turns into completion prompts."""

    def __init__(self, user_turn: str = "<start_of_turn>user\n", model_turn: str = "<start_of_turn>model\n",
                 end_of_turn: str = "<end_of_turn>\n"):
        self.user_turn = user_turn
        self.model_turn = model_turn
        self.end_of_turn = end_of_turn

    def create_turn_prompt(self, content: str) -> str:
        """Wrap ``content`` as a user turn followed by an open model turn."""
        return f"{self.user_turn}{content}{self.end_of_turn}{self.model_turn}"

    def create_clinical_notes_prompt(self, transcript: str) -> str:
        return self.create_turn_prompt(f"{CLINICAL_NOTES_INSTRUCTION}\n\nTranscription: {transcript}")
