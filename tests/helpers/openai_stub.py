"""Test helpers to stub the OpenAI Responses client used by extraction.py.

The stub returns a fixed ``output_text`` and records each call's kwargs so
tests can assert on the request shape (model, instructions, image part).
"""

from __future__ import annotations

from typing import Any


class OpenAIStub:
    """Minimal stub matching the ``openai.OpenAI`` shape for ``extraction.py``.

    Parameters
    ----------
    output_text:
        The text the fake ``responses.create`` returns on every call.
    calls_out:
        A list that will be appended with each call's kwargs.
    """

    def __init__(self, output_text: str, calls_out: list[dict[str, Any]] | None = None) -> None:
        self._output_text = output_text
        self._calls = calls_out if calls_out is not None else []

        class _Responses:
            def __init__(self, outer: OpenAIStub) -> None:
                self._outer = outer

            def create(self, **kwargs):
                self._outer._calls.append(kwargs)

                class _Resp:
                    output_text: str

                resp = _Resp()
                resp.output_text = self._outer._output_text
                return resp

        self.responses = _Responses(self)

    @property
    def calls(self) -> list[dict[str, Any]]:
        return self._calls
