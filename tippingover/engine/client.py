"""Client-side tooltip runtime.

A :class:`TooltipRuntime` owns one :class:`ClientResolutionController`
per annotated link. Controllers react to pointer events, finish any
late-phase resolution through a :class:`TooltipTransport`, and drive a
:class:`TooltipSurface` that actually shows the tooltip boxes. The
runtime keeps the single "currently visible tooltip" identifier so only
one tooltip is ever on screen.

Everything runs on one asyncio event loop. Each controller has at most
one request task in flight; a request that does not answer within
:data:`REQUEST_TIMEOUT` seconds resets the controller to ``UNLOADED``.
"""

from __future__ import annotations

import asyncio
import json
import logging
import urllib.parse
import urllib.request
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Protocol, Sequence

from ..exceptions import InvalidTransition, TooltipRequestError
from .annotation import LinkAnnotation

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 60.0


class TooltipState(Enum):
    """Resolution state of one client tooltip."""

    UNLOADED = "unloaded"
    CHECKING = "checking"  # metadata-only request in flight
    LOADING = "loading"  # content request in flight
    LOADED = "loaded"


TRANSITIONS: Dict[TooltipState, FrozenSet[TooltipState]] = {
    TooltipState.UNLOADED: frozenset({TooltipState.CHECKING, TooltipState.LOADING, TooltipState.LOADED}),
    TooltipState.CHECKING: frozenset({TooltipState.LOADING, TooltipState.LOADED, TooltipState.UNLOADED}),
    TooltipState.LOADING: frozenset({TooltipState.LOADED, TooltipState.UNLOADED}),
    TooltipState.LOADED: frozenset({TooltipState.UNLOADED}),
}


def replace_placeholders(html: str, target: Optional[str], direct_target: Optional[str] = None) -> str:
    """Substitute ``$1``-``$4`` in fallback HTML.

    ``$1``/``$2`` are the target title and fragment, ``$3``/``$4`` the
    direct target title and fragment. Without a direct target, ``$3``
    and ``$4`` repeat the target values.
    """

    if direct_target:
        title, _, fragment = direct_target.partition("#")
        html = html.replace("$3", title).replace("$4", fragment)
    if target:
        title, _, fragment = target.partition("#")
        return html.replace("$1", title).replace("$3", title).replace("$2", fragment).replace("$4", fragment)
    for placeholder in ("$1", "$2", "$3", "$4"):
        html = html.replace(placeholder, "")
    return html


@dataclass
class ClientTooltipState:
    """Mutable per-element state, seeded from the link annotation."""

    element_id: str
    target: str
    direct_target: Optional[str] = None
    tooltip_title: Optional[str] = None
    can_late_follow: bool = True
    is_image: bool = False
    empty_title: bool = False
    missing_page: bool = False
    state: TooltipState = TooltipState.UNLOADED
    show_when_loaded: bool = False
    disabled: bool = False

    @classmethod
    def from_annotation(cls, annotation: LinkAnnotation) -> "ClientTooltipState":
        return cls(
            element_id=annotation.element_id,
            target=annotation.target,
            direct_target=annotation.direct_target,
            tooltip_title=annotation.tooltip_title,
            can_late_follow=annotation.can_late_follow,
            is_image=annotation.is_image,
            empty_title=annotation.empty_title,
            missing_page=annotation.missing_page,
        )

    def move_to(self, new_state: TooltipState) -> None:
        if new_state not in TRANSITIONS[self.state]:
            raise InvalidTransition(self.element_id, self.state, new_state)
        self.state = new_state


@dataclass(frozen=True)
class ClientConfig:
    """The render-global settings the server exports for the client."""

    late_redirect_follow: bool = False
    late_category_filtering: bool = False
    late_title_derivation: bool = False
    late_existence_check: bool = False
    loading_tooltip: Optional[str] = None
    missing_page_tooltip: Optional[str] = None
    empty_title_tooltip: Optional[str] = None
    preload_loading_tooltip: bool = False
    preload_missing_page_tooltip: bool = False
    preload_empty_title_tooltip: bool = False
    use_two_request_process: bool = False

    @classmethod
    def from_export(cls, data: Mapping[str, Any]) -> "ClientConfig":
        return cls(
            late_redirect_follow=bool(data.get("doLateTargetRedirectFollow", False)),
            late_category_filtering=bool(data.get("doLateCategoryFiltering", False)),
            late_title_derivation=bool(data.get("doLateTitleDerivation", False)),
            late_existence_check=bool(data.get("doLateExistsCheck", False)),
            loading_tooltip=data.get("loadingTooltip"),
            missing_page_tooltip=data.get("missingPageTooltip"),
            empty_title_tooltip=data.get("emptyTitleTooltip"),
            preload_loading_tooltip=bool(data.get("preloadLoadingTooltip", False)),
            preload_missing_page_tooltip=bool(data.get("preloadMissingPageTooltip", False)),
            preload_empty_title_tooltip=bool(data.get("preloadEmptyTitleTooltip", False)),
            use_two_request_process=bool(data.get("useTwoRequestProcess", False)),
        )


class TooltipTransport(Protocol):
    async def request(
        self,
        target: str,
        tooltip: Optional[str],
        options: Sequence[str],
        direct: Optional[str] = None,
    ) -> Mapping[str, Any]:
        """Query the tooltip endpoint; raise :class:`TooltipRequestError` on failure."""


class UrllibTransport:
    """POST tooltip queries to the endpoint with ``urllib.request``.

    The blocking call runs in a worker thread so the event loop stays
    responsive.
    """

    def __init__(self, endpoint_url: str, timeout: float = REQUEST_TIMEOUT) -> None:
        self.endpoint_url = endpoint_url
        self.timeout = timeout

    def _post(self, payload: Dict[str, str]) -> Mapping[str, Any]:
        body = urllib.parse.urlencode(payload).encode("utf-8")
        request = urllib.request.Request(
            self.endpoint_url,
            data=body,
            headers={"Content-Type": "application/x-www-form-urlencoded", "Accept": "application/json"},
        )
        try:
            with urllib.request.urlopen(request, timeout=self.timeout) as resp:
                data = json.loads(resp.read().decode("utf-8"))
        except (OSError, ValueError) as exc:
            raise TooltipRequestError(f"Tooltip request to {self.endpoint_url} failed: {exc}") from exc
        if not isinstance(data, dict):
            raise TooltipRequestError("Tooltip endpoint returned a non-object response.")
        if "error" in data:
            raise TooltipRequestError(f"Tooltip endpoint rejected the query: {data['error']}")
        return data

    async def request(
        self,
        target: str,
        tooltip: Optional[str],
        options: Sequence[str],
        direct: Optional[str] = None,
    ) -> Mapping[str, Any]:
        payload = {"target": target, "options": "|".join(options)}
        if direct is not None:
            payload["direct"] = direct
        if tooltip is not None:
            payload["tooltip"] = tooltip
        return await asyncio.to_thread(self._post, payload)


class TooltipSurface(Protocol):
    """Whatever displays tooltip boxes (a browser DOM, a terminal, a test double)."""

    def set_content(self, element_id: str, html: str, preload: bool = False) -> None:
        ...

    def clear(self, element_id: str) -> None:
        ...

    def show(self, element_id: str) -> None:
        ...

    def hide(self, element_id: str) -> None:
        ...

    def resize(self, element_id: str) -> None:
        """Fit the box to content that just changed."""

    def reposition(self, element_id: str) -> None:
        ...

    def remove(self, element_id: str) -> None:
        """Drop the tooltip and preload boxes for good."""


@dataclass
class TooltipBoard:
    """In-memory :class:`TooltipSurface` that records what would be on screen."""

    contents: Dict[str, str] = field(default_factory=dict)
    preloaded: Dict[str, bool] = field(default_factory=dict)
    visible: set = field(default_factory=set)
    removed: set = field(default_factory=set)
    repositioned: Dict[str, int] = field(default_factory=dict)
    resized: Dict[str, int] = field(default_factory=dict)

    def set_content(self, element_id: str, html: str, preload: bool = False) -> None:
        self.contents[element_id] = html
        self.preloaded[element_id] = preload

    def clear(self, element_id: str) -> None:
        self.contents.pop(element_id, None)
        self.preloaded.pop(element_id, None)

    def show(self, element_id: str) -> None:
        self.visible.add(element_id)

    def hide(self, element_id: str) -> None:
        self.visible.discard(element_id)

    def resize(self, element_id: str) -> None:
        self.resized[element_id] = self.resized.get(element_id, 0) + 1

    def reposition(self, element_id: str) -> None:
        self.repositioned[element_id] = self.repositioned.get(element_id, 0) + 1

    def remove(self, element_id: str) -> None:
        self.clear(element_id)
        self.visible.discard(element_id)
        self.removed.add(element_id)


class ClientResolutionController:
    """State machine for one tooltip-eligible link."""

    def __init__(self, runtime: "TooltipRuntime", state: ClientTooltipState) -> None:
        self.runtime = runtime
        self.state = state
        self.hovered = False
        self._task: Optional[asyncio.Task] = None
        self._seed_from_flags()

    @property
    def element_id(self) -> str:
        return self.state.element_id

    @property
    def config(self) -> ClientConfig:
        return self.runtime.config

    @property
    def surface(self) -> TooltipSurface:
        return self.runtime.surface

    def _seed_from_flags(self) -> None:
        # Links the render already resolved to a fallback start out loaded.
        if self.state.missing_page and self.config.missing_page_tooltip is not None:
            self._complete(self.config.missing_page_tooltip, self.config.preload_missing_page_tooltip, fallback=True)
        elif self.state.empty_title and self.config.empty_title_tooltip is not None:
            self._complete(self.config.empty_title_tooltip, self.config.preload_empty_title_tooltip, fallback=True)

    # Pointer events -----------------------------------------------------

    def pointer_enter(self) -> None:
        if self.state.disabled:
            return
        self.hovered = True
        self.state.show_when_loaded = True
        current = self.state.state

        if current is TooltipState.LOADED:
            self._make_visible()
        elif current is TooltipState.LOADING:
            if self.config.loading_tooltip is not None:
                self._make_visible()
        elif current is TooltipState.UNLOADED:
            if self.config.loading_tooltip is not None and self.config.use_two_request_process:
                self.state.move_to(TooltipState.CHECKING)
                self._spawn(self._check())
            else:
                self._begin_loading()

    def pointer_enter_tooltip(self) -> None:
        """The pointer moved from the link onto its tooltip box."""

        if self.state.disabled:
            return
        self.hovered = True
        self.state.show_when_loaded = True
        if self.state.state is TooltipState.LOADED:
            self._make_visible()

    def pointer_move(self) -> None:
        if self.runtime.visible_id == self.element_id:
            self.surface.reposition(self.element_id)

    def pointer_leave(self) -> None:
        self.hovered = False
        self.state.show_when_loaded = False
        if self.runtime.visible_id == self.element_id:
            self.runtime.visible_id = None
        self.runtime.update_visibility()

    # Requests -----------------------------------------------------------

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    async def wait(self) -> None:
        """Wait for the in-flight request, if any, to settle."""

        while self.pending:
            await asyncio.shield(self._task)

    def _spawn(self, coro) -> None:
        if self.pending:
            coro.close()
            return
        self._task = asyncio.get_running_loop().create_task(coro)

    def _options(self, include_text: bool) -> List[str]:
        options = ["text"] if include_text else []
        unknown_title = self.state.tooltip_title is None
        if self.config.late_redirect_follow and self.state.can_late_follow and unknown_title:
            options.append("follow")
        if self.config.late_existence_check:
            options.append("exists")
        if self.config.late_category_filtering:
            options.append("cat")
        if self.config.late_title_derivation and unknown_title:
            options.extend(["title", "image"])
        return options

    async def _request(self, options: Sequence[str]) -> Optional[Mapping[str, Any]]:
        target = self.state.target
        try:
            return await asyncio.wait_for(
                self.runtime.transport.request(
                    target, self.state.tooltip_title, list(options), self.state.direct_target
                ),
                timeout=self.runtime.request_timeout,
            )
        except asyncio.TimeoutError:
            logger.info("Tooltip request for %s timed out after %s seconds.", target, self.runtime.request_timeout)
        except TooltipRequestError as exc:
            logger.info("Tooltip request for %s failed: %s", target, exc)
        self.reset()
        return None

    async def _check(self) -> None:
        options = self._options(include_text=False)
        response = await self._request(options)
        if response is not None:
            await self.finish_check(response, options)

    async def _load(self) -> None:
        options = self._options(include_text=True)
        response = await self._request(options)
        if response is not None:
            self.finish_load(response, options)

    def _begin_loading(self) -> None:
        self.state.move_to(TooltipState.LOADING)
        self._show_loading_fallback()
        self._spawn(self._load())

    # Responses ----------------------------------------------------------

    def _rejected_by_category(self, response: Mapping[str, Any]) -> bool:
        return self.config.late_category_filtering and response.get("passesCategoryFilter") == "false"

    def _merge_title(self, response: Mapping[str, Any], options: Sequence[str]) -> bool:
        """Fold late title derivation into the state; False when a requested title never came back."""

        if not self.config.late_title_derivation or "title" not in options:
            return True
        if "tooltipTitle" not in response:
            return False
        title = str(response["tooltipTitle"]).strip()
        self.state.empty_title = title == ""
        if title:
            self.state.tooltip_title = title
        if "isImage" in response:
            self.state.is_image = response["isImage"] != "false"
        return True

    def _merge_exists(self, response: Mapping[str, Any]) -> None:
        if self.config.late_existence_check and "exists" in response:
            self.state.missing_page = response["exists"] == "false"

    async def finish_check(self, response: Mapping[str, Any], options: Sequence[str] = ()) -> None:
        if self.state.disabled or self.state.state is not TooltipState.CHECKING:
            return
        if self._rejected_by_category(response) or not self._merge_title(response, options):
            self.disable()
            return
        self._merge_exists(response)

        if not self.state.missing_page and not self.state.empty_title:
            self.state.move_to(TooltipState.LOADING)
            self.state.show_when_loaded = self.hovered
            self._show_loading_fallback()
            await self._load()
        elif not self._apply_fallback():
            self.disable()

    def finish_load(self, response: Mapping[str, Any], options: Sequence[str] = ()) -> None:
        if self.state.disabled or self.state.state is not TooltipState.LOADING:
            return
        if self._rejected_by_category(response) or not self._merge_title(response, options):
            self.disable()
            return
        self._merge_exists(response)

        if not self.state.missing_page and not self.state.empty_title:
            text = response.get("text")
            html = text.get("*") if isinstance(text, Mapping) else None
            if not html or not str(html).strip():
                self.disable()
                return
            self._complete(str(html), self.state.is_image)
        elif not self._apply_fallback():
            self.disable()

    def _apply_fallback(self) -> bool:
        if self.state.missing_page and self.config.missing_page_tooltip is not None:
            self._complete(self.config.missing_page_tooltip, self.config.preload_missing_page_tooltip, fallback=True)
            return True
        if self.state.empty_title and self.config.empty_title_tooltip is not None:
            self._complete(self.config.empty_title_tooltip, self.config.preload_empty_title_tooltip, fallback=True)
            return True
        return False

    # Display ------------------------------------------------------------

    def _placeholders(self, html: str) -> str:
        return replace_placeholders(html, self.state.target, self.state.direct_target)

    def _show_loading_fallback(self) -> None:
        loading = self.config.loading_tooltip
        if loading is None:
            return
        self.surface.set_content(self.element_id, self._placeholders(loading), self.config.preload_loading_tooltip)
        self.surface.resize(self.element_id)
        if self.hovered:
            self._make_visible()

    def _complete(self, html: str, preload: bool, *, fallback: bool = False) -> None:
        if fallback:
            html = self._placeholders(html)
        self.surface.set_content(self.element_id, html, preload)
        self.surface.resize(self.element_id)
        self.state.move_to(TooltipState.LOADED)
        if self.state.show_when_loaded and self.hovered:
            self._make_visible()

    def _make_visible(self) -> None:
        self.runtime.visible_id = self.element_id
        self.runtime.update_visibility()
        self.surface.reposition(self.element_id)

    def reset(self) -> None:
        """Return to ``UNLOADED`` after a failed or timed-out request."""

        if self.state.state is not TooltipState.UNLOADED:
            self.state.move_to(TooltipState.UNLOADED)
        self.state.show_when_loaded = False
        self.surface.clear(self.element_id)
        self.surface.hide(self.element_id)
        if self.runtime.visible_id == self.element_id:
            self.runtime.visible_id = None
        self.runtime.update_visibility()

    def disable(self) -> None:
        """Permanently remove the tooltip for this link."""

        logger.debug("Removing tooltip %s.", self.element_id)
        self.state.disabled = True
        if self.runtime.visible_id == self.element_id:
            self.runtime.visible_id = None
        self.surface.remove(self.element_id)
        self.runtime.unregister(self.element_id)


class TooltipRuntime:
    """Process-wide client runtime: controllers, transport, surface and visibility."""

    def __init__(
        self,
        config: ClientConfig,
        transport: TooltipTransport,
        surface: Optional[TooltipSurface] = None,
        *,
        request_timeout: float = REQUEST_TIMEOUT,
    ) -> None:
        self.config = config
        self.transport = transport
        self.surface: TooltipSurface = surface if surface is not None else TooltipBoard()
        self.request_timeout = request_timeout
        self.visible_id: Optional[str] = None
        self.controllers: Dict[str, ClientResolutionController] = {}

    def register(self, annotation: LinkAnnotation) -> ClientResolutionController:
        """Return the controller for an annotated link, creating it on first sight.

        Links to the same target share one element id and one controller.
        """

        controller = self.controllers.get(annotation.element_id)
        if controller is None:
            controller = ClientResolutionController(self, ClientTooltipState.from_annotation(annotation))
            self.controllers[annotation.element_id] = controller
        return controller

    def register_attributes(self, attributes: Mapping[str, str]) -> ClientResolutionController:
        return self.register(LinkAnnotation.from_attributes(dict(attributes)))

    def unregister(self, element_id: str) -> None:
        self.controllers.pop(element_id, None)

    def controller(self, element_id: str) -> Optional[ClientResolutionController]:
        return self.controllers.get(element_id)

    def update_visibility(self) -> None:
        for element_id in self.controllers:
            if element_id == self.visible_id:
                self.surface.show(element_id)
            else:
                self.surface.hide(element_id)
