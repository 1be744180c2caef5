#!/usr/bin/env python3
"""
User input port

Business logic asks questions through a Prompter so the same decisions
can be driven by a terminal or by scripted answers.
"""

import getpass
import logging
from typing import Iterable, List, Optional

logger = logging.getLogger(__name__)


class Prompter:
    """Interface for asking the user something"""

    def ask(self, prompt: str, default: Optional[str] = None) -> str:
        raise NotImplementedError

    def secret(self, prompt: str) -> str:
        raise NotImplementedError

    def confirm(self, prompt: str, default: bool = False) -> bool:
        raise NotImplementedError


class ConsolePrompter(Prompter):
    """Prompts on the controlling terminal"""

    def __init__(self, assume_yes: bool = False):
        self.assume_yes = assume_yes

    def ask(self, prompt: str, default: Optional[str] = None) -> str:
        if default is not None:
            full_prompt = f"{prompt} [{default}]: "
        else:
            full_prompt = f"{prompt}: "

        user_input = input(full_prompt).strip()
        if not user_input and default is not None:
            return default
        return user_input

    def secret(self, prompt: str) -> str:
        return getpass.getpass(f"{prompt}: ")

    def confirm(self, prompt: str, default: bool = False) -> bool:
        if self.assume_yes:
            return True
        default_str = "Y/n" if default else "y/N"
        answer = input(f"{prompt} ({default_str}): ").strip().lower()
        if not answer:
            return default
        return answer in ('y', 'yes')


class ScriptedPrompter(Prompter):
    """Replays a fixed list of answers

    Raises EOFError when the script runs out, like input() on a closed stdin.
    """

    def __init__(self, answers: Iterable = ()):
        self.answers: List = list(answers)
        self.asked: List[str] = []

    def _next(self, prompt: str):
        self.asked.append(prompt)
        if not self.answers:
            raise EOFError(f"No scripted answer for: {prompt}")
        return self.answers.pop(0)

    def ask(self, prompt: str, default: Optional[str] = None) -> str:
        answer = str(self._next(prompt))
        if not answer and default is not None:
            return default
        return answer

    def secret(self, prompt: str) -> str:
        return str(self._next(prompt))

    def confirm(self, prompt: str, default: bool = False) -> bool:
        answer = self._next(prompt)
        if isinstance(answer, bool):
            return answer
        answer = str(answer).strip().lower()
        if not answer:
            return default
        return answer in ('y', 'yes')
