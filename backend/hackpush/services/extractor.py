from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from html import unescape
from typing import Any, Callable
from urllib.parse import parse_qs, urlparse

from bs4 import BeautifulSoup, Tag

from .errors import ExtractionFailed
from .languages import (
  DEFAULT_LANGUAGE,
  detect_language_from_code,
  is_placeholder_language,
  normalize_language,
)
from .page import PageSource

logger = logging.getLogger(__name__)

ROUTE_MARKER = 'challenges'
PAGE_TYPE_MARKER = 'problem'
DEFAULT_CATEGORY = 'misc'
UNKNOWN_SLUG = 'unknown-problem'
UNKNOWN_TITLE = 'Unknown Problem'

CATEGORY_TAXONOMY = [
  'algorithms',
  'data-structures',
  'mathematics',
  'python',
  'java',
  'sql',
  'database',
  'artificial-intelligence',
  'regex',
  'functional-programming',
]

VIEW_LINES_SELECTORS = ['.view-lines.monaco-mouse-cursor-text', '.view-lines']
CODE_INPUT_SELECTORS = [
  'textarea[name="code"]',
  'textarea.code-input',
  'textarea[class*="code"]',
  'textarea[data-id="editor"]',
  '.CodeMirror textarea',
  'input[name="code"]',
]
LANGUAGE_SELECT_SELECTORS = [
  'select[name="language"]',
  '[class*="language"] select',
  '.challenge-selector select',
  '#language-select',
  'select[data-language]',
]
TITLE_SELECTORS = [
  '.challenge-title',
  'h1[class*="challenge"]',
  '.challenge-page-title',
  'h1',
  '[data-attr1="Title"]',
]

LEADING_DIGITS_PATTERN = re.compile(r'^\d{10,}')
TOP_OFFSET_PATTERN = re.compile(r'top:\s*(\d+(?:\.\d+)?)px')
SHEBANG_SEARCH_LIMIT = 50


@dataclass(frozen=True)
class ExtractedFields:
  code: str
  language: str
  problem_title: str
  problem_slug: str
  category: str
  source_url: str


def clean_code(code: str | None) -> str:
  if not code:
    return ''
  if LEADING_DIGITS_PATTERN.match(code):
    shebang_index = code.find('#!')
    if 0 <= shebang_index < SHEBANG_SEARCH_LIMIT:
      code = code[shebang_index:]
    else:
      code = LEADING_DIGITS_PATTERN.sub('', code, count=1)
  return code.strip()


def _soup(page: PageSource) -> BeautifulSoup:
  return BeautifulSoup(page.html() or '', 'html.parser')


def _line_text(line: Tag) -> str:
  leaves = [span for span in line.find_all('span') if span.find('span') is None]
  if leaves:
    text = ''.join(span.get_text() for span in leaves)
  else:
    text = line.get_text()
  if '&' in text:
    text = unescape(text)
  return text.replace('\xa0', ' ').rstrip()


def reconstruct_view_lines(soup: BeautifulSoup) -> str | None:
  container = None
  for selector in VIEW_LINES_SELECTORS:
    container = soup.select_one(selector)
    if container is not None:
      break
  if container is None:
    return None

  lines_by_offset: dict[float, str] = {}
  for line in container.select('.view-line'):
    match = TOP_OFFSET_PATTERN.search(line.get('style') or '')
    top = float(match.group(1)) if match else 0.0
    text = _line_text(line)
    # Virtualized editors render the same line more than once; first non-empty copy wins.
    if top not in lines_by_offset or (not lines_by_offset[top].strip() and text.strip()):
      lines_by_offset[top] = text

  code = '\n'.join(lines_by_offset[top] for top in sorted(lines_by_offset))
  return code if code.strip() else None


def _code_from_editor(page: PageSource, soup: BeautifulSoup) -> str | None:
  return page.editor_value()


def _code_from_view_lines(page: PageSource, soup: BeautifulSoup) -> str | None:
  return reconstruct_view_lines(soup)


def _code_from_inputs(page: PageSource, soup: BeautifulSoup) -> str | None:
  for selector in CODE_INPUT_SELECTORS:
    element = soup.select_one(selector)
    if element is None:
      continue
    value = element.get('value') if element.name == 'input' else element.get_text()
    if value and value.strip():
      return value
  return None


CODE_STRATEGIES: list[tuple[str, Callable[[PageSource, BeautifulSoup], str | None]]] = [
  ('editor', _code_from_editor),
  ('view-lines', _code_from_view_lines),
  ('input', _code_from_inputs),
]


def extract_code(page: PageSource) -> str:
  soup = _soup(page)
  for name, strategy in CODE_STRATEGIES:
    try:
      code = strategy(page, soup)
    except Exception:  # noqa: BLE001
      logger.warning('Code extraction strategy %s failed', name, exc_info=True)
      continue
    cleaned = clean_code(code)
    if cleaned:
      logger.debug('Extracted %d characters of code via %s', len(cleaned), name)
      return cleaned
  raise ExtractionFailed('Could not extract code from editor. The code editor may have been hidden after submission.')


def _accept_language(candidate: str | None) -> str | None:
  if is_placeholder_language(candidate):
    return None
  normalized = normalize_language(candidate)
  return None if is_placeholder_language(normalized) else normalized


def _select_value(select: Tag) -> str | None:
  option = select.select_one('option[selected]') or select.select_one('option')
  if option is None:
    return select.get('value')
  return option.get('value') or option.get_text().strip()


def _language_candidates(page: PageSource, soup: BeautifulSoup, code: str | None):
  for selector in LANGUAGE_SELECT_SELECTORS:
    for select in soup.select(selector):
      yield 'select', _select_value(select)
  for element in soup.select('[data-language]'):
    yield 'data-attribute', element.get('data-language')
  yield 'editor', page.editor_language()
  query = parse_qs(urlparse(page.url).query)
  for value in query.get('language', []):
    yield 'url', value
  yield 'content', detect_language_from_code(code)


def extract_language(page: PageSource, code: str | None = None) -> str:
  soup = _soup(page)
  for source, candidate in _language_candidates(page, soup, code):
    language = _accept_language(candidate)
    if language:
      logger.debug('Language %s detected via %s', language, source)
      return language
  logger.warning('Could not detect language, using default %s', DEFAULT_LANGUAGE)
  return DEFAULT_LANGUAGE


def _path_segments(url: str) -> list[str]:
  return [segment for segment in urlparse(url).path.split('/') if segment]


def slug_to_title(slug: str) -> str:
  return ' '.join(word[:1].upper() + word[1:] for word in slug.split('-') if word)


def extract_problem_slug(url: str) -> str:
  segments = _path_segments(url)
  if ROUTE_MARKER in segments:
    index = segments.index(ROUTE_MARKER)
    if index < len(segments) - 1 and segments[index + 1] != PAGE_TYPE_MARKER:
      return segments[index + 1]
  if PAGE_TYPE_MARKER in segments:
    index = segments.index(PAGE_TYPE_MARKER)
    if index > 0:
      return segments[index - 1]
  if segments and segments[-1] not in {PAGE_TYPE_MARKER, ROUTE_MARKER}:
    return segments[-1]
  logger.warning('Could not extract problem slug from URL: %s', url)
  return UNKNOWN_SLUG


def extract_problem_title(page: PageSource) -> str:
  soup = _soup(page)
  for selector in TITLE_SELECTORS:
    element = soup.select_one(selector)
    if element is None:
      continue
    title = element.get_text(' ', strip=True)
    if title:
      return title

  slug = extract_problem_slug(page.url)
  return slug_to_title(slug) if slug != UNKNOWN_SLUG else UNKNOWN_TITLE


def extract_category(url: str) -> str:
  path = urlparse(url).path.lower()
  for category in CATEGORY_TAXONOMY:
    if re.search(rf'(?<![a-z0-9]){re.escape(category)}(?![a-z0-9])', path):
      return category

  segments = _path_segments(url)
  if ROUTE_MARKER in segments:
    index = segments.index(ROUTE_MARKER)
    if index < len(segments) - 1 and PAGE_TYPE_MARKER not in segments[index + 1]:
      return segments[index + 1]
  return DEFAULT_CATEGORY


def extract_from_page(page: PageSource, *, code: str | None = None, language: str | None = None) -> ExtractedFields:
  """Collect every field from the live page, reusing snapshots captured at submit time."""
  resolved_code = clean_code(code) or extract_code(page)
  resolved_language = _accept_language(language) or extract_language(page, resolved_code)
  url = page.url
  return ExtractedFields(
    code=resolved_code,
    language=resolved_language,
    problem_title=extract_problem_title(page),
    problem_slug=extract_problem_slug(url),
    category=extract_category(url),
    source_url=url,
  )


def _record_text(record: dict[str, Any], *keys: str) -> str | None:
  for key in keys:
    value = record.get(key)
    if isinstance(value, dict):
      value = value.get('slug') or value.get('name')
    if isinstance(value, str) and value.strip():
      return value.strip()
  return None


def extract_from_record(record: dict[str, Any], page_url: str, *, fallback_code: str | None = None) -> ExtractedFields:
  code = clean_code(record.get('code')) or clean_code(fallback_code)
  if not code:
    raise ExtractionFailed('Submission record carried no code.')

  language = _accept_language(_record_text(record, 'language', 'lang')) or detect_language_from_code(code) or DEFAULT_LANGUAGE
  slug = _record_text(record, 'challenge_slug', 'slug') or extract_problem_slug(page_url)
  title = _record_text(record, 'name', 'challenge_name') or slug_to_title(slug)
  category = _record_text(record, 'track') or extract_category(page_url)
  return ExtractedFields(
    code=code,
    language=language,
    problem_title=title,
    problem_slug=slug,
    category=category,
    source_url=page_url,
  )
