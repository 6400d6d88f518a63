# -*- coding: utf-8 -*-
from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Iterable

import pywikibot
from pywikibot.data.api import Request
from pywikibot.exceptions import APIError
from pywikibot.exceptions import Error as PywikibotError

from .decision import RevertDecisionEngine, SaveConflictError, SaveError
from .env import get_bool_env
from .jobs import JsonJobQueue
from .liftwing import LiftWingClient
from .models import RevisionContext, RevisionRecord, UserRef
from .policy import Policy, PolicyError
from .service import RevertService, ScoreClient
from .settings import RuntimeSettings
from .talk_page import TalkPage, TalkPageNotifier
from .task_control import save_page_or_dry_run

LOGGER = logging.getLogger(__name__)

MW_TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"
CONFLICT_CODES = {"editconflict", "alreadyrolled", "undofailure"}
SEMI_PROTECTION_LEVELS = {"", "autoconfirmed"}
REVISION_PROPS = "ids|user|userid|timestamp|content|contentmodel|tags"


def parse_mw_timestamp(raw: object) -> datetime | None:
    if not raw:
        return None
    try:
        return datetime.strptime(str(raw), MW_TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)
    except ValueError:
        return None


def format_mw_timestamp(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime(MW_TIMESTAMP_FORMAT)


def _query_pages(data: dict[str, Any]) -> list[dict[str, Any]]:
    pages = (data or {}).get("query", {}).get("pages", [])
    if isinstance(pages, dict):
        pages = list(pages.values())
    return [page for page in pages if isinstance(page, dict)]


def _main_slot(revision: dict[str, Any]) -> tuple[str | None, str]:
    slots = revision.get("slots")
    main = slots.get("main", {}) if isinstance(slots, dict) else revision
    model = str(main.get("contentmodel") or revision.get("contentmodel") or "wikitext")
    if main.get("texthidden") or main.get("missing"):
        return None, model
    content = main.get("content", main.get("*"))
    return (str(content) if content is not None else None), model


def _revision_user(revision: dict[str, Any]) -> UserRef | None:
    if revision.get("userhidden") or not revision.get("user"):
        return None
    return UserRef(int(revision.get("userid") or 0), str(revision["user"]))


def _record_from_api(page: dict[str, Any], revision: dict[str, Any]) -> RevisionRecord:
    content, model = _main_slot(revision)
    return RevisionRecord(
        rev_id=int(revision["revid"]),
        parent_id=int(revision.get("parentid") or 0) or None,
        page_id=int(page.get("pageid") or 0),
        user=_revision_user(revision),
        content=content,
        content_model=model,
        timestamp=parse_mw_timestamp(revision.get("timestamp")),
    )


class SiteRevisionStore:
    """Revision lookups through `prop=revisions`."""

    def __init__(self, site: pywikibot.Site) -> None:
        self.site = site

    def _revisions(self, **params: Any) -> list[tuple[dict[str, Any], dict[str, Any]]]:
        data = self.site.simple_request(action="query", prop="revisions", rvslots="main", **params).submit()
        found: list[tuple[dict[str, Any], dict[str, Any]]] = []
        for page in _query_pages(data):
            for revision in page.get("revisions") or []:
                if isinstance(revision, dict) and revision.get("revid"):
                    found.append((page, revision))
        return found

    def get_revision(self, rev_id: int, *, content: bool = True) -> RevisionRecord | None:
        props = REVISION_PROPS if content else "ids|user|userid|timestamp"
        found = self._revisions(revids=str(rev_id), rvprop=props)
        return _record_from_api(*found[0]) if found else None

    def get_previous_revision(self, revision: RevisionRecord) -> RevisionRecord | None:
        if not revision.parent_id:
            return None
        return self.get_revision(revision.parent_id)

    def get_current_revision(self, page_id: int) -> RevisionRecord | None:
        found = self._revisions(pageids=str(page_id), rvprop=REVISION_PROPS)
        return _record_from_api(*found[0]) if found else None

    def load_context(self, rev_id: int) -> RevisionContext | None:
        found = self._revisions(revids=str(rev_id), rvprop="ids|user|userid|tags")
        if not found:
            return None
        page, revision = found[0]
        user = _revision_user(revision)
        if user is None:
            return None
        return RevisionContext(
            rev_id=int(revision["revid"]),
            parent_rev_id=int(revision.get("parentid") or 0) or None,
            page_id=int(page.get("pageid") or 0),
            user=user,
            tags=frozenset(str(tag) for tag in revision.get("tags") or ()),
            namespace=int(page.get("ns") or 0),
            page_title=str(page.get("title") or ""),
        )

    def count_reverts_against(self, actor: UserRef, user: UserRef, page_id: int, since: datetime) -> int:
        """Reverts by `actor` on `page_id` since `since` whose undone revision belongs to `user`."""
        reverts = self._revisions(
            pageids=str(page_id),
            rvuser=actor.name,
            rvend=format_mw_timestamp(since),
            rvlimit="50",
            rvprop="ids|user|userid|timestamp",
        )
        count = 0
        for _page, revision in reverts:
            parent_id = int(revision.get("parentid") or 0)
            if not parent_id:
                continue
            parent = self.get_revision(parent_id, content=False)
            if parent is not None and user.same_as(parent.user):
                count += 1
        return count


class SitePageUpdater(SiteRevisionStore):
    def save_revert(
        self,
        page_id: int,
        content: str,
        *,
        base_rev_id: int,
        undo_rev_id: int,
        undo_after_rev_id: int,
        summary: str,
        minor: bool,
        bot: bool,
    ) -> int:
        """
        Save the revert of `undo_rev_id`, refusing to overwrite edits made after `base_rev_id`.

        When the candidate is still the current revision the wiki performs the undo itself
        (`undo`/`undoafter`), so the edit is recorded as an undo. Otherwise the merged
        `content` is sent as plain text and only the summary names the undone revision.
        """
        params: dict[str, Any] = {
            "action": "edit",
            "pageid": str(page_id),
            "baserevid": str(base_rev_id),
            "summary": summary,
            "nocreate": "1",
            "token": self.site.tokens["csrf"],
        }
        if base_rev_id == undo_rev_id:
            params["undo"] = str(undo_rev_id)
            params["undoafter"] = str(undo_after_rev_id)
        else:
            params["text"] = content
        params["minor" if minor else "notminor"] = "1"
        if bot:
            params["bot"] = "1"
        try:
            data = self.site.simple_request(**params).submit()
        except APIError as exc:
            if exc.code in CONFLICT_CODES:
                raise SaveConflictError(f"rev {undo_rev_id}: {exc.info}", code=exc.code) from exc
            raise SaveError(f"rev {undo_rev_id}: {exc.info}", code=exc.code) from exc
        except PywikibotError as exc:
            raise SaveError(f"rev {undo_rev_id}: {exc}") from exc

        result = data.get("edit", {}) if isinstance(data, dict) else {}
        if str(result.get("result", "")).lower() != "success":
            raise SaveError(f"rev {undo_rev_id}: unexpected edit result {result!r}", code="unknown_result")
        if "nochange" in result:
            raise SaveConflictError(f"rev {undo_rev_id}: page already restored to rev {undo_after_rev_id}", code="nochange")
        return int(result["newrevid"])


class SiteTagStore:
    def __init__(self, site: pywikibot.Site) -> None:
        self.site = site

    def get_tags(self, rev_id: int) -> set[str]:
        data = self.site.simple_request(action="query", prop="revisions", revids=str(rev_id), rvprop="ids|tags").submit()
        tags: set[str] = set()
        for page in _query_pages(data):
            for revision in page.get("revisions") or []:
                tags.update(str(tag) for tag in revision.get("tags") or ())
        return tags

    def add_tags(self, tags: Iterable[str], rev_id: int) -> None:
        existing = self.get_tags(rev_id)
        missing = [tag for tag in tags if tag not in existing]
        if not missing:
            return
        self.site.simple_request(
            action="tag",
            revid=str(rev_id),
            add="|".join(missing),
            token=self.site.tokens["csrf"],
        ).submit()


class SiteUserDirectory:
    def __init__(self, site: pywikibot.Site) -> None:
        self.site = site
        self._users: dict[str, pywikibot.User] = {}

    def _user(self, user: UserRef) -> pywikibot.User:
        key = user.name.strip()
        if key not in self._users:
            self._users[key] = pywikibot.User(self.site, key)
        return self._users[key]

    def rights(self, user: UserRef) -> set[str]:
        return {str(right) for right in self._user(user).rights()}

    def groups(self, user: UserRef) -> set[str]:
        return {str(group) for group in self._user(user).groups()}

    def is_blocked(self, user: UserRef) -> bool:
        return bool(self._user(user).is_blocked())


class SitePageDirectory:
    def __init__(self, site: pywikibot.Site) -> None:
        self.site = site

    def is_fully_protected(self, page_id: int) -> bool:
        data = self.site.simple_request(action="query", prop="info", inprop="protection", pageids=str(page_id)).submit()
        for page in _query_pages(data):
            for protection in page.get("protection") or []:
                if protection.get("type") == "edit" and str(protection.get("level") or "") not in SEMI_PROTECTION_LEVELS:
                    return True
        return False


class SiteTalkPageStore:
    def __init__(self, site: pywikibot.Site, *, require_discussion_tools: bool = False) -> None:
        self.site = site
        self.require_discussion_tools = require_discussion_tools

    @property
    def available(self) -> bool:
        if not self.require_discussion_tools:
            return True
        return bool(self.site.has_extension("DiscussionTools"))

    def get_talk_page(self, username: str) -> TalkPage | None:
        page = pywikibot.Page(self.site, username, ns=3)
        if not page.exists():
            return TalkPage(title=page.title(), exists=False)
        return TalkPage(title=page.title(), text=page.text, content_model=page.content_model, exists=True)

    def save_talk_page(self, page: TalkPage, text: str, summary: str, *, actor: UserRef) -> None:
        target = pywikibot.Page(self.site, page.title)
        target.text = text
        try:
            save_page_or_dry_run(
                target,
                script_name="talk_page",
                summary=summary,
                minor=False,
                bot=True,
                context={"actor": actor.name},
            )
        except PywikibotError as exc:
            raise SaveError(f"{page.title}: {exc}") from exc


def _read_config_page(site: pywikibot.Site, title: str) -> dict[str, Any] | None:
    page = pywikibot.Page(site, title)
    if not page.exists():
        LOGGER.warning("Config page %s does not exist, using local policy", title)
        return None
    try:
        data = json.loads(page.text)
    except json.JSONDecodeError as exc:
        LOGGER.warning("Config page %s is not valid JSON (%s), using local policy", title, exc)
        return None
    if not isinstance(data, dict):
        LOGGER.warning("Config page %s is not a JSON object, using local policy", title)
        return None
    return data


def load_wiki_policy(
    site: pywikibot.Site,
    title: str,
    base: Policy,
    multilingual_title: str | None = None,
) -> Policy:
    """
    Overlay the on-wiki JSON configuration page on `base`; a bad or missing page keeps `base`.

    On multilingual wikis the keys of `multilingual_title` are merged over the main page first.
    """
    data = _read_config_page(site, title)
    if base.multilingual_wiki and multilingual_title:
        multilingual = _read_config_page(site, multilingual_title)
        if multilingual is not None:
            data = {**(data or {}), **multilingual}
    if data is None:
        return base
    try:
        return Policy.from_mapping(data, base=base)
    except PolicyError as exc:
        LOGGER.warning("Config page %s was rejected (%s), using local policy", title, exc)
        return base


def fetch_recent_edits(
    site: pywikibot.Site,
    *,
    since: datetime | None,
    limit: int,
    max_pages: int = 50,
) -> list[dict[str, Any]]:
    """
    Recent non-bot edits, oldest first.

    With `since`, changes are read forward from that timestamp and `rccontinue` is followed
    until `limit` changes are collected, so a backlog is drained over several runs instead
    of being skipped. Without it, only the newest `limit` changes are returned.
    """
    params: dict[str, str] = {
        "action": "query",
        "list": "recentchanges",
        "rctype": "edit",
        "rcshow": "!bot",
        "rcprop": "title|ids|user|userid|flags|tags|timestamp",
        "rclimit": str(max(1, min(limit, 500))),
    }
    if since is None:
        params["rcdir"] = "older"
    else:
        params["rcdir"] = "newer"
        params["rcstart"] = format_mw_timestamp(since)

    items: list[dict[str, Any]] = []
    rccontinue: str | None = None
    for _ in range(max(max_pages, 1)):
        query_params = dict(params)
        if rccontinue:
            query_params["rccontinue"] = rccontinue
        data = Request(site=site, parameters=query_params).submit()

        chunk = data.get("query", {}).get("recentchanges", [])
        if isinstance(chunk, list):
            items.extend(entry for entry in chunk if isinstance(entry, dict))
        if since is None or len(items) >= limit:
            break
        rccontinue = data.get("continue", {}).get("rccontinue")
        if not rccontinue:
            break

    items = items[:limit]
    return items if since is not None else list(reversed(items))


def context_from_change(change: dict[str, Any]) -> RevisionContext | None:
    if not change.get("revid") or not change.get("user") or change.get("userhidden"):
        return None
    return RevisionContext(
        rev_id=int(change["revid"]),
        parent_rev_id=int(change.get("old_revid") or 0) or None,
        page_id=int(change.get("pageid") or 0),
        user=UserRef(int(change.get("userid") or 0), str(change["user"])),
        tags=frozenset(str(tag) for tag in change.get("tags") or ()),
        namespace=int(change.get("ns") or 0),
        page_title=str(change.get("title") or ""),
    )


def build_service(
    site: pywikibot.Site,
    settings: RuntimeSettings,
    policy: Policy,
    *,
    queue: JsonJobQueue | None = None,
    scorer: ScoreClient | None = None,
) -> RevertService:
    actor = UserRef(0, settings.username)
    revisions = SitePageUpdater(site)
    engine = RevertDecisionEngine(revisions, SiteTagStore(site), policy, actor, dry_run=settings.dry_run)
    notifier = TalkPageNotifier(
        revisions,
        SiteTalkPageStore(site, require_discussion_tools=get_bool_env("AUTOMOD_REQUIRE_DISCUSSION_TOOLS", False)),
        policy,
        actor,
    )
    service = RevertService(
        policy=policy,
        actor=actor,
        users=SiteUserDirectory(site),
        history=revisions,
        scorer=scorer or LiftWingClient.from_settings(settings),
        engine=engine,
        queue=queue or JsonJobQueue(max_attempts=settings.job_max_attempts),
        pages=SitePageDirectory(site),
        notifier=notifier,
        model_name=settings.liftwing_model,
        wiki_id=settings.wiki_id,
    )
    engine.on_revert = service.queue_talk_page_notice
    return service
