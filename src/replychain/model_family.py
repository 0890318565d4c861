"""Model families and the turn delimiters each one expects."""

from __future__ import annotations

from enum import Enum

_CHAT_PREFIXES: tuple[str, ...] = ("text-chat", "text-davinci-002-render")
_CODE_PREFIXES: tuple[str, ...] = ("code-",)

IM_END = "<|im_end|>"
IM_SEP = "<|im_sep|>"
END_OF_TEXT = "<|endoftext|>"


class ModelFamily(str, Enum):
    """Closed set of prompt dialects understood by the completion endpoint."""

    CHAT = "chat"
    CODE = "code"
    PLAIN = "plain"

    @classmethod
    def from_model(cls, model: str) -> "ModelFamily":
        name = (model or "").strip()
        if name.startswith(_CHAT_PREFIXES):
            return cls.CHAT
        if name.startswith(_CODE_PREFIXES):
            return cls.CODE
        return cls.PLAIN

    @property
    def end_token(self) -> str:
        return _DELIMITERS[self][0]

    @property
    def sep_token(self) -> str:
        return _DELIMITERS[self][1]

    @property
    def stop_sequences(self) -> list[str]:
        """Stop sequences sent upstream when the caller does not supply any."""

        if self is ModelFamily.CHAT:
            return [self.end_token, self.sep_token]
        return [self.end_token]

    def canonicalize(self, text: str) -> str:
        """Map chat delimiters onto the tokenizer's end-of-text token before counting."""

        if self is not ModelFamily.CHAT:
            return text
        return text.replace(IM_END, END_OF_TEXT).replace(IM_SEP, END_OF_TEXT)


_DELIMITERS: dict[ModelFamily, tuple[str, str]] = {
    ModelFamily.CHAT: (IM_END, IM_SEP),
    ModelFamily.CODE: ("</code>", "</code>"),
    ModelFamily.PLAIN: (END_OF_TEXT, END_OF_TEXT),
}


__all__ = ["ModelFamily", "IM_END", "IM_SEP", "END_OF_TEXT"]
