import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from database import Storage, now_iso, parse_iso
from errors import SchedulingError
from schemas import BlogPost, Comment

logger = logging.getLogger(__name__)

BLOG_POSTS_KEY = "blog_posts"
BLOG_COMMENTS_KEY = "blog_comments"
SCHEDULED_POSTS_KEY = "scheduled_posts"

DRAFT = "draft"
PUBLISHED = "published"
SCHEDULED = "scheduled"
ARCHIVED = "archived"
POST_STATUSES = (DRAFT, PUBLISHED, SCHEDULED, ARCHIVED)

REACTION_TYPES = ("like", "love", "laugh")


def _as_datetime(value: Union[str, datetime]) -> datetime:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    return parse_iso(value)


def _publication_date(value: Union[str, datetime, None]) -> datetime:
    if not value:
        raise SchedulingError("A scheduled post needs a scheduled date")
    when = _as_datetime(value)
    if when <= datetime.now(timezone.utc):
        raise SchedulingError("The scheduled date must be in the future")
    return when


class BlogService:
    """Blog posts, their comments and the scheduled-publication side table."""

    def __init__(self, storage: Storage):
        self.storage = storage

    # ---------- Posts ----------

    def get_all_posts(self, include_all: bool = False) -> List[Dict[str, Any]]:
        posts = self.storage.get(BLOG_POSTS_KEY, [])
        if include_all:
            return posts
        return [p for p in posts if p.get("status") == PUBLISHED]

    def get_post(self, post_id: int, increment_view: bool = False) -> Optional[Dict[str, Any]]:
        if not increment_view:
            return next((p for p in self.get_all_posts(True) if p["id"] == int(post_id)), None)
        with self.storage.transaction() as tx:
            posts = tx.get(BLOG_POSTS_KEY, [])
            post = next((p for p in posts if p["id"] == int(post_id)), None)
            if post is None:
                return None
            post["view_count"] = (post.get("view_count") or 0) + 1
            tx.set(BLOG_POSTS_KEY, posts)
        return post

    def get_posts_by_status(self, status: str) -> List[Dict[str, Any]]:
        return [p for p in self.get_all_posts(True) if p.get("status") == status]

    def get_posts_by_category(self, category: str) -> List[Dict[str, Any]]:
        return [p for p in self.get_all_posts() if p.get("category") == category]

    def get_posts_by_tag(self, tag: str) -> List[Dict[str, Any]]:
        tag = tag.lower()
        return [p for p in self.get_all_posts() if tag in (t.lower() for t in p.get("tags") or [])]

    def get_recent_posts(self, count: int = 3) -> List[Dict[str, Any]]:
        posts = sorted(self.get_all_posts(), key=lambda p: p.get("publish_date") or "", reverse=True)
        return posts[:count]

    def get_popular_posts(self, count: int = 3) -> List[Dict[str, Any]]:
        posts = sorted(self.get_all_posts(), key=lambda p: p.get("view_count") or 0, reverse=True)
        return posts[:count]

    def get_featured_posts(self, count: int = 3) -> List[Dict[str, Any]]:
        return [p for p in self.get_all_posts() if p.get("featured")][:count]

    def create_post(self, data: Dict[str, Any], author: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Create a post; ``author`` is the signed-in user writing it, if any."""
        status = data.get("status") or DRAFT
        when = _publication_date(data.get("scheduled_date")) if status == SCHEDULED else None
        timestamp = now_iso()
        with self.storage.transaction() as tx:
            posts = tx.get(BLOG_POSTS_KEY, [])
            new_id = max((p["id"] for p in posts), default=0) + 1
            if author:
                author_name = f"{author.get('first_name', '')} {author.get('last_name', '')}".strip()
                author_id = author.get("id")
            else:
                author_name = data.get("author") or "Unknown author"
                author_id = data.get("author_id")
            post = BlogPost(
                id=new_id,
                title=data.get("title") or "Untitled",
                excerpt=data.get("excerpt") or "",
                content=data.get("content") or "",
                date=timestamp,
                publish_date=timestamp if status == PUBLISHED else None,
                author=author_name,
                author_id=author_id,
                category=data.get("category") or "Uncategorized",
                image_url=data.get("image_url") or "",
                tags=data.get("tags") or [],
                status=status,
                featured=bool(data.get("featured")),
                scheduled_date=when.isoformat() if when else None,
                created_at=timestamp,
                updated_at=timestamp,
            ).model_dump()

            if when:
                self._register_schedule(tx, new_id, when)

            posts.append(post)
            tx.set(BLOG_POSTS_KEY, posts)
        return post

    def update_post(self, post_id: int, data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        post_id = int(post_id)
        changes = {k: v for k, v in data.items() if k != "id"}
        with self.storage.transaction() as tx:
            posts = tx.get(BLOG_POSTS_KEY, [])
            index = next((i for i, p in enumerate(posts) if p["id"] == post_id), None)
            if index is None:
                return None
            current = posts[index]

            if changes.get("status") == PUBLISHED and current.get("status") != PUBLISHED:
                changes.setdefault("publish_date", now_iso())

            status = changes.get("status") or current.get("status")
            if status == SCHEDULED and ("status" in changes or "scheduled_date" in changes):
                when = _publication_date(changes.get("scheduled_date") or current.get("scheduled_date"))
                changes["scheduled_date"] = when.isoformat()
                self._unregister_schedule(tx, post_id)
                self._register_schedule(tx, post_id, when)
            else:
                if isinstance(changes.get("scheduled_date"), datetime):
                    changes["scheduled_date"] = _as_datetime(changes["scheduled_date"]).isoformat()
                if status != SCHEDULED and current.get("status") == SCHEDULED:
                    self._unregister_schedule(tx, post_id)

            updated = BlogPost(**{**current, **changes, "id": post_id, "updated_at": now_iso()}).model_dump()
            posts[index] = updated
            tx.set(BLOG_POSTS_KEY, posts)
        return updated

    def delete_post(self, post_id: int) -> bool:
        post_id = int(post_id)
        with self.storage.transaction() as tx:
            posts = tx.get(BLOG_POSTS_KEY, [])
            remaining = [p for p in posts if p["id"] != post_id]
            if len(remaining) == len(posts):
                return False
            comments = tx.get(BLOG_COMMENTS_KEY, {})
            comments.pop(str(post_id), None)
            tx.set(BLOG_POSTS_KEY, remaining)
            tx.set(BLOG_COMMENTS_KEY, comments)
            self._unregister_schedule(tx, post_id)
        return True

    def schedule_post(self, post_id: int, when: Union[str, datetime]) -> Optional[Dict[str, Any]]:
        when = _publication_date(when)
        return self.update_post(post_id, {"status": SCHEDULED, "scheduled_date": when.isoformat()})

    def search_posts(self, query: Optional[str]) -> List[Dict[str, Any]]:
        posts = self.get_all_posts()
        if not query:
            return posts
        term = query.lower()
        return [
            p for p in posts
            if term in p.get("title", "").lower()
            or term in p.get("excerpt", "").lower()
            or term in p.get("content", "").lower()
            or term in p.get("author", "").lower()
            or term in p.get("category", "").lower()
            or any(term in tag.lower() for tag in p.get("tags") or [])
        ]

    @staticmethod
    def _register_schedule(tx, post_id: int, when: datetime) -> None:
        scheduled = tx.get(SCHEDULED_POSTS_KEY, [])
        scheduled.append({"post_id": post_id, "scheduled_date": when.isoformat()})
        tx.set(SCHEDULED_POSTS_KEY, scheduled)

    @staticmethod
    def _unregister_schedule(tx, post_id: int) -> None:
        scheduled = tx.get(SCHEDULED_POSTS_KEY, [])
        remaining = [s for s in scheduled if s["post_id"] != post_id]
        if len(remaining) != len(scheduled):
            tx.set(SCHEDULED_POSTS_KEY, remaining)

    def get_scheduled_posts(self) -> List[Dict[str, Any]]:
        return self.storage.get(SCHEDULED_POSTS_KEY, [])

    def publish_scheduled_posts(self, now: Optional[datetime] = None) -> int:
        """Publish every scheduled post whose date has passed. Returns how many were published."""
        now = now or datetime.now(timezone.utc)
        published = 0
        with self.storage.transaction() as tx:
            scheduled = tx.get(SCHEDULED_POSTS_KEY, [])
            due = [s for s in scheduled if _as_datetime(s["scheduled_date"]) <= now]
            if not due:
                return 0
            posts = tx.get(BLOG_POSTS_KEY, [])
            by_id = {p["id"]: p for p in posts}
            for entry in due:
                post = by_id.get(entry["post_id"])
                if post and post.get("status") == SCHEDULED:
                    post["status"] = PUBLISHED
                    post["publish_date"] = now.isoformat()
                    post["updated_at"] = now.isoformat()
                    published += 1
            tx.set(BLOG_POSTS_KEY, posts)
            tx.set(SCHEDULED_POSTS_KEY, [s for s in scheduled if s not in due])
        if published:
            logger.info("Published %d scheduled post(s)", published)
        return published

    # ---------- Comments ----------

    def get_comments(self, post_id: int, only_approved: bool = True) -> List[Dict[str, Any]]:
        comments = self.storage.get(BLOG_COMMENTS_KEY, {}).get(str(post_id), [])
        if only_approved:
            return [c for c in comments if c.get("approved")]
        return comments

    def get_pending_comments(self) -> List[Dict[str, Any]]:
        pending = []
        for post_id, comments in self.storage.get(BLOG_COMMENTS_KEY, {}).items():
            pending.extend({**c, "post_id": int(post_id)} for c in comments if not c.get("approved"))
        return pending

    def add_comment(self, post_id: int, author: str, content: str, needs_approval: bool = True,
                    parent_id: Optional[int] = None, email: Optional[str] = None) -> Optional[Dict[str, Any]]:
        post_id = int(post_id)
        with self.storage.transaction() as tx:
            if self.get_post(post_id) is None:
                return None
            comments = tx.get(BLOG_COMMENTS_KEY, {})
            post_comments = comments.get(str(post_id), [])
            comment = Comment(
                id=max((c["id"] for c in post_comments), default=0) + 1,
                post_id=post_id,
                author=author,
                content=content,
                date=now_iso(),
                approved=not needs_approval,
                parent_id=parent_id,
                email=email,
                reactions=[{"type": t, "count": 0} for t in REACTION_TYPES],
            ).model_dump()
            post_comments.append(comment)
            comments[str(post_id)] = post_comments
            tx.set(BLOG_COMMENTS_KEY, comments)
        return comment

    def _edit_comment(self, post_id: int, comment_id: int, edit) -> bool:
        with self.storage.transaction() as tx:
            comments = tx.get(BLOG_COMMENTS_KEY, {})
            post_comments = comments.get(str(post_id), [])
            comment = next((c for c in post_comments if c["id"] == int(comment_id)), None)
            if comment is None or not edit(comment):
                return False
            tx.set(BLOG_COMMENTS_KEY, comments)
        return True

    def approve_comment(self, post_id: int, comment_id: int) -> bool:
        def approve(comment):
            comment["approved"] = True
            return True
        return self._edit_comment(post_id, comment_id, approve)

    def add_reaction(self, post_id: int, comment_id: int, reaction_type: str) -> bool:
        def react(comment):
            reaction = next((r for r in comment.get("reactions", []) if r["type"] == reaction_type), None)
            if reaction is None:
                return False
            reaction["count"] += 1
            return True
        return self._edit_comment(post_id, comment_id, react)

    def delete_comment(self, post_id: int, comment_id: int) -> bool:
        with self.storage.transaction() as tx:
            comments = tx.get(BLOG_COMMENTS_KEY, {})
            post_comments = comments.get(str(post_id), [])
            remaining = [c for c in post_comments if c["id"] != int(comment_id)]
            if len(remaining) == len(post_comments):
                return False
            comments[str(post_id)] = remaining
            tx.set(BLOG_COMMENTS_KEY, comments)
        return True

    # ---------- Utilities ----------

    def get_all_tags(self) -> List[str]:
        tags = []
        for post in self.get_all_posts():
            for tag in post.get("tags") or []:
                if tag.lower() not in tags:
                    tags.append(tag.lower())
        return tags

    def get_all_categories(self) -> List[str]:
        categories = []
        for post in self.get_all_posts():
            if post.get("category") and post["category"] not in categories:
                categories.append(post["category"])
        return categories

    def sort_posts(self, posts: List[Dict[str, Any]], sort_by: str = "date") -> List[Dict[str, Any]]:
        if sort_by == "date":
            return sorted(posts, key=lambda p: p.get("publish_date") or p.get("date") or "", reverse=True)
        if sort_by == "title":
            return sorted(posts, key=lambda p: p.get("title", "").lower())
        if sort_by == "views":
            return sorted(posts, key=lambda p: p.get("view_count") or 0, reverse=True)
        if sort_by == "comments":
            comments = self.storage.get(BLOG_COMMENTS_KEY, {})
            return sorted(posts, key=lambda p: len(comments.get(str(p["id"]), [])), reverse=True)
        return list(posts)


class ScheduledPostPoller:
    """Runs BlogService.publish_scheduled_posts at startup and then every ``interval`` seconds."""

    def __init__(self, blog: BlogService, interval: float = 60):
        self.blog = blog
        self.interval = interval
        self._task: Optional[asyncio.Task] = None

    def run_once(self) -> int:
        return self.blog.publish_scheduled_posts()

    async def _run(self) -> None:
        while True:
            try:
                await asyncio.to_thread(self.run_once)
            except Exception:
                logger.exception("Publishing scheduled posts failed")
            await asyncio.sleep(self.interval)

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self._run())
            logger.info("Scheduled post poller started (every %ss)", self.interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
