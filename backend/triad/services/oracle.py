"""AI subject generation and answer scoring.

The oracle wraps an OpenAI chat-completion endpoint. Each call asks for a
JSON object and validates its shape; any failure surfaces as
``OracleError`` so callers can decide whether to retry, skip or abort.
"""

import json
from dataclasses import dataclass
from typing import Any, Optional

from flask import current_app
import openai

from triad.errors import OracleError

SYSTEM_PROMPT = (
    "You are the AI judge of Triad Trials, a party game where two players discuss "
    "a subject and give a final answer. Keep everything PG-13. Return JSON only."
)


@dataclass
class Evaluation:
    score: int
    justification: str


def parse_json_from_text(text: str) -> Optional[Any]:
    """Pull the first JSON object or array out of a model reply.

    Tolerates Markdown code fences and chatter before or after the payload.
    """
    cleaned = (text or '').strip()
    if cleaned.startswith("```"):
        cleaned = "\n".join(line for line in cleaned.splitlines() if not line.strip().startswith("```")).strip()
    starts = [idx for idx in (cleaned.find("{"), cleaned.find("[")) if idx != -1]
    if starts:
        cleaned = cleaned[min(starts):]
    end_idx = max(cleaned.rfind("}"), cleaned.rfind("]"))
    if end_idx != -1:
        cleaned = cleaned[: end_idx + 1]
    try:
        return json.loads(cleaned)
    except ValueError:
        return None


class OracleClient:
    def __init__(self, api_key=None, model='gpt-4o-mini', timeout=30.0, logger=None):
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.logger = logger
        self._client = None

    @classmethod
    def from_config(cls, config, logger=None):
        return cls(
            api_key=config.get('OPENAI_API_KEY'),
            model=config.get('OPENAI_MODEL', 'gpt-4o-mini'),
            timeout=float(config.get('ORACLE_TIMEOUT_SEC', 30)),
            logger=logger,
        )

    def _log(self, msg):
        if self.logger is not None:
            self.logger.info(msg)

    @property
    def client(self):
        if self._client is None:
            if not self.api_key:
                raise OracleError('AI judge is not configured (OPENAI_API_KEY not set)', 503)
            self._client = openai.OpenAI(api_key=self.api_key, timeout=self.timeout)
        return self._client

    def complete(self, prompt: str, temperature: float = 0.8) -> str:
        """Send one prompt and return the raw text of the reply."""
        try:
            resp = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                temperature=temperature,
            )
        except openai.OpenAIError as exc:
            self._log(f"[oracle] call failed model={self.model}: {exc}")
            raise OracleError(f'AI call failed: {exc}') from exc
        content = resp.choices[0].message.content if resp.choices else None
        if not content:
            raise OracleError('AI returned an empty reply')
        return content

    def _complete_json(self, prompt: str, temperature: float) -> dict:
        data = parse_json_from_text(self.complete(prompt, temperature=temperature))
        if not isinstance(data, dict):
            raise OracleError('AI reply was not a JSON object')
        return data

    def generate_subject(self, topic: Optional[str] = None) -> str:
        if topic:
            ask = f"Generate a subject related to the following topic: {topic}."
        else:
            ask = "Generate a random conversation subject."
        prompt = (
            "You specialize in generating conversation subjects for a game.\n"
            f"{ask}\n"
            'Reply as {"subject": "<one short subject>"}.'
        )
        data = self._complete_json(prompt, temperature=0.9)
        subject = data.get('subject')
        if not isinstance(subject, str) or not subject.strip():
            raise OracleError('AI reply did not contain a subject')
        subject = subject.strip()
        self._log(f"[oracle] subject generated topic={topic!r} subject={subject!r}")
        return subject

    def evaluate_accuracy(self, subject: str, answer: str) -> Evaluation:
        prompt = (
            "You are evaluating the accuracy of an answer to a subject.\n\n"
            f"Subject: {subject}\n"
            f"Answer: {answer}\n\n"
            "Provide an accuracy score between 1 and 100, and a justification for the score.\n"
            'Reply as {"accuracy_score": <int 1-100>, "justification": "<one or two sentences>"}.'
        )
        data = self._complete_json(prompt, temperature=0.2)
        raw_score = data.get('accuracy_score', data.get('accuracyScore'))
        justification = data.get('justification')
        try:
            score = int(round(float(raw_score)))
        except (TypeError, ValueError, OverflowError):
            raise OracleError('AI reply did not contain a numeric accuracy score')
        if not isinstance(justification, str):
            justification = ''
        score = max(1, min(100, score))
        self._log(f"[oracle] evaluated score={score}")
        return Evaluation(score=score, justification=justification.strip())

    def consolidate_answer(self, subject: str, transcript: str) -> str:
        """Distill the players' discussion into one final answer."""
        prompt = (
            "Two players discussed the subject below. Combine their discussion into the single "
            "best final answer they would agree on. If they said nothing useful, give your own best answer.\n\n"
            f"Subject: {subject}\n"
            f"Discussion:\n{transcript or '(no messages)'}\n\n"
            'Reply as {"answer": "<final answer>"}.'
        )
        data = self._complete_json(prompt, temperature=0.3)
        answer = data.get('answer')
        if not isinstance(answer, str) or not answer.strip():
            raise OracleError('AI reply did not contain an answer')
        return answer.strip()


def init_oracle(flask_app) -> None:
    flask_app.extensions['oracle'] = OracleClient.from_config(flask_app.config, logger=flask_app.logger)


def get_oracle() -> OracleClient:
    return current_app.extensions['oracle']
