from __future__ import annotations

import re
from typing import Any, Callable

DEFAULT_LANGUAGE = 'python3'
PLACEHOLDER_LANGUAGES = {'language', 'select language', 'unknown', 'plaintext', 'text'}

LANGUAGE_MAPPINGS: dict[str, dict[str, Any]] = {
  'python3': {'extension': 'py', 'comment': 'docstring', 'aliases': ['python3', 'py3', 'pypy3']},
  'python': {'extension': 'py', 'comment': 'hash', 'aliases': ['python', 'python2', 'py', 'py2', 'pypy']},
  'java': {'extension': 'java', 'comment': 'block', 'aliases': ['java', 'java8', 'java15']},
  'javascript': {'extension': 'js', 'comment': 'block', 'aliases': ['javascript', 'js', 'nodejs', 'node']},
  'typescript': {'extension': 'ts', 'comment': 'block', 'aliases': ['typescript', 'ts']},
  'cpp': {'extension': 'cpp', 'comment': 'block', 'aliases': ['cpp', 'c++', 'cxx', 'cpp14', 'cpp20']},
  'c': {'extension': 'c', 'comment': 'block', 'aliases': ['c']},
  'csharp': {'extension': 'cs', 'comment': 'block', 'aliases': ['csharp', 'c#', 'cs']},
  'go': {'extension': 'go', 'comment': 'block', 'aliases': ['go', 'golang']},
  'ruby': {'extension': 'rb', 'comment': 'ruby', 'aliases': ['ruby', 'rb']},
  'swift': {'extension': 'swift', 'comment': 'block', 'aliases': ['swift']},
  'kotlin': {'extension': 'kt', 'comment': 'block', 'aliases': ['kotlin', 'kt']},
  'scala': {'extension': 'scala', 'comment': 'block', 'aliases': ['scala']},
  'rust': {'extension': 'rs', 'comment': 'block', 'aliases': ['rust', 'rs']},
  'php': {'extension': 'php', 'comment': 'block', 'aliases': ['php']},
  'r': {'extension': 'r', 'comment': 'hash', 'aliases': ['r']},
  'sql': {'extension': 'sql', 'comment': 'dash', 'aliases': ['sql', 'mysql', 'oracle', 'tsql', 'db2']},
  'bash': {'extension': 'sh', 'comment': 'hash', 'aliases': ['bash', 'shell', 'sh']},
}

_ALIASES: dict[str, str] = {
  alias: canonical
  for canonical, config in LANGUAGE_MAPPINGS.items()
  for alias in config['aliases']
}

# Checked in order; the first match wins.
LANGUAGE_HEURISTICS: list[tuple[str, Callable[[str, str], bool]]] = [
  ('python3', lambda snippet, lower: re.search(r'^#!.*python3?\b', snippet, re.M) is not None),
  ('bash', lambda snippet, lower: re.search(r'^#!.*\b(ba)?sh\b', snippet, re.M) is not None),
  ('python3', lambda snippet, lower: 'import sys' in snippet or ('def ' in snippet and 'if __name__' in snippet)),
  ('java', lambda snippet, lower: 'public class' in snippet or 'public static void main' in snippet),
  ('csharp', lambda snippet, lower: 'using System' in snippet or 'Console.WriteLine' in snippet),
  ('javascript', lambda snippet, lower: 'process.stdin' in snippet or 'require(' in snippet),
  ('cpp', lambda snippet, lower: '#include' in lower and ('using namespace' in lower or 'std::' in snippet)),
  ('c', lambda snippet, lower: '#include' in lower and 'int main' in lower),
  ('go', lambda snippet, lower: lower.startswith('package ') and 'func ' in lower),
  ('rust', lambda snippet, lower: 'fn main' in lower and 'let ' in lower),
  ('ruby', lambda snippet, lower: re.search(r'\bgets\b', snippet) is not None and re.search(r'^\s*end\s*$', snippet, re.M) is not None),
  ('sql', lambda snippet, lower: lower.startswith('select ') and ' from ' in lower),
]


def normalize_language(value: str) -> str:
  key = value.strip().lower()
  return _ALIASES.get(key, key)


def is_placeholder_language(value: str | None) -> bool:
  return not value or value.strip().lower() in PLACEHOLDER_LANGUAGES


def file_extension(language: str) -> str:
  config = LANGUAGE_MAPPINGS.get(normalize_language(language))
  return config['extension'] if config else 'txt'


def comment_style(language: str) -> str:
  config = LANGUAGE_MAPPINGS.get(language)
  return config['comment'] if config else 'hash'


def detect_language_from_code(code: str | None) -> str | None:
  snippet = (code or '').strip()
  if not snippet:
    return None
  lower = snippet.lower()
  for language, matcher in LANGUAGE_HEURISTICS:
    if matcher(snippet, lower):
      return language
  return None
