"""
Post Channels — submit approved notifications to X (Twitter).

The governor only knows the ``Poster`` protocol. A missing poster (publishing
disabled or credentials absent) means dry-run: decisions are still logged,
nothing leaves the process.
"""

import asyncio
from typing import Optional, Protocol

import requests
import structlog
import tweepy

logger = structlog.get_logger(__name__)


class PostSubmissionError(Exception):
    """Submission failed or timed out. Never fatal to a cycle."""
    pass


class Poster(Protocol):
    async def submit(self, text: str, reply_to_id: Optional[str] = None) -> str:
        """Publish ``text`` and return the external post id."""
        ...


class XPoster:
    """
    Post via the X v2 API (tweepy).

    tweepy's client is synchronous, so calls run in a worker thread and are
    bounded by ``timeout``.
    """

    def __init__(
        self,
        api_key: str = "",
        api_secret: str = "",
        access_token: str = "",
        access_secret: str = "",
        timeout: float = 5.0,
        client: Optional[tweepy.Client] = None,
    ):
        self.timeout = timeout
        self._client = client or tweepy.Client(
            consumer_key=api_key,
            consumer_secret=api_secret,
            access_token=access_token,
            access_token_secret=access_secret,
            wait_on_rate_limit=False,
        )

    @classmethod
    def from_settings(cls, s, timeout: Optional[float] = None) -> Optional["XPoster"]:
        """Build a poster, or None (dry-run) when disabled or credentials are missing."""
        if not s.tweet_enable:
            logger.info("posting_disabled", reason="TWEET_ENABLE is off")
            return None
        if not s.x_credentials_present:
            logger.warning("posting_disabled", reason="X credentials missing")
            return None
        return cls(
            api_key=s.x_api_key,
            api_secret=s.x_api_secret,
            access_token=s.x_access_token,
            access_secret=s.x_access_secret,
            timeout=timeout if timeout is not None else s.external_timeout_seconds,
        )

    async def submit(self, text: str, reply_to_id: Optional[str] = None) -> str:
        try:
            response = await asyncio.wait_for(
                asyncio.to_thread(
                    self._client.create_tweet,
                    text=text,
                    in_reply_to_tweet_id=reply_to_id,
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            raise PostSubmissionError(f"create_tweet timed out after {self.timeout}s") from e
        except tweepy.TweepyException as e:
            raise PostSubmissionError(str(e)) from e
        except requests.exceptions.RequestException as e:
            # tweepy does not wrap transport errors from its requests session
            raise PostSubmissionError(f"create_tweet transport error: {e}") from e

        data = response.data or {}
        post_id = data.get("id")
        if not post_id:
            raise PostSubmissionError("create_tweet returned no id")
        logger.info("post_submitted", post_id=str(post_id), reply_to=reply_to_id)
        return str(post_id)
