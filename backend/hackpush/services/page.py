from __future__ import annotations

import logging
from typing import Callable, Protocol

from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[], None]


class Subscription(Protocol):
  def cancel(self) -> None: ...


class PageSource(Protocol):
  """What the detector needs from a live challenge page."""

  @property
  def url(self) -> str: ...

  def html(self) -> str: ...

  def editor_value(self) -> str | None: ...

  def editor_language(self) -> str | None: ...

  def subscribe(self, region: str, callback: ChangeCallback) -> Subscription: ...


class _RegionSubscription:
  def __init__(self, page: RenderedPage, region: str, callback: ChangeCallback) -> None:
    self.page = page
    self.region = region
    self.callback = callback
    self.active = True

  def cancel(self) -> None:
    if self.active:
      self.active = False
      self.page._subscriptions.remove(self)


class RenderedPage:
  """Page state pushed in by a browser bridge, one rendered snapshot at a time.

  Each `update` notifies the subscriptions whose region selector matches an
  element of the new markup.
  """

  def __init__(
    self,
    url: str,
    html: str = '',
    *,
    editor_value: str | None = None,
    editor_language: str | None = None,
  ) -> None:
    self._url = url
    self._html = html
    self._editor_value = editor_value
    self._editor_language = editor_language
    self._subscriptions: list[_RegionSubscription] = []

  @property
  def url(self) -> str:
    return self._url

  @property
  def subscription_count(self) -> int:
    return len(self._subscriptions)

  def html(self) -> str:
    return self._html

  def editor_value(self) -> str | None:
    return self._editor_value

  def editor_language(self) -> str | None:
    return self._editor_language

  def subscribe(self, region: str, callback: ChangeCallback) -> Subscription:
    subscription = _RegionSubscription(self, region, callback)
    self._subscriptions.append(subscription)
    return subscription

  def update(
    self,
    *,
    html: str | None = None,
    url: str | None = None,
    editor_value: str | None = None,
    editor_language: str | None = None,
    clear_editor: bool = False,
  ) -> None:
    if url is not None:
      self._url = url
    if clear_editor:
      self._editor_value = None
      self._editor_language = None
    if editor_value is not None:
      self._editor_value = editor_value
    if editor_language is not None:
      self._editor_language = editor_language
    if html is None:
      return

    self._html = html
    soup = BeautifulSoup(html, 'html.parser')
    for subscription in list(self._subscriptions):
      if not subscription.active or soup.select_one(subscription.region) is None:
        continue
      try:
        subscription.callback()
      except Exception:  # noqa: BLE001
        logger.exception('Change callback for %s failed', subscription.region)
