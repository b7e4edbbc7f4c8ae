# -*- coding: utf-8 -*-
"""
Notifier.

Writes the in-app notification row, then forwards a push message to the
messaging collaborator. Runs after payment confirmation, so nothing here
raises: failures are logged and dropped.
"""

import json
from typing import Any, Dict, Optional

import requests
from requests.adapters import HTTPAdapter
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from urllib3.util.retry import Retry

from parkpay.models.notification import Notification
from parkpay.services.structured_logging import get_logger

logger = get_logger('parkpay.notifier')


def _requests_session() -> requests.Session:
    """Session with short retries for the messaging collaborator."""
    s = requests.Session()
    retries = Retry(
        total=2,
        connect=2,
        read=2,
        backoff_factor=0.3,
        status_forcelist=(429, 500, 502, 503, 504),
        allowed_methods=frozenset(["POST"]),
        raise_on_status=False,
    )
    s.mount("https://", HTTPAdapter(max_retries=retries))
    s.mount("http://", HTTPAdapter(max_retries=retries))
    return s


class Notifier:

    def __init__(self, session: Session, messaging_url: Optional[str] = None,
                 site_url: str = '', timeout: float = 5.0,
                 http: Optional[requests.Session] = None):
        self.db = session
        self.messaging_url = messaging_url
        self.site_url = (site_url or '').rstrip('/')
        self.timeout = timeout
        self.http = http

    def link(self, path: str) -> str:
        return f"{self.site_url}{path}"

    def notify(self, user_id: str, title: str, message: str, link_path: str = '/dashboard',
               data: Optional[Dict[str, Any]] = None, kind: str = 'order') -> Optional[Notification]:
        link_url = self.link(link_path)
        notification = self._store(user_id, kind, title, message, link_url, data)
        self._push(user_id, title, message, link_url)
        return notification

    def _store(self, user_id, kind, title, message, link_url, data) -> Optional[Notification]:
        notification = Notification(
            user_id=user_id,
            type=kind,
            title=title,
            message=message,
            link_url=link_url,
            data=json.dumps(data, default=str) if data else None,
            read=False,
        )
        try:
            self.db.add(notification)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to store notification for user {user_id}: {e}", user_id=user_id)
            return None
        return notification

    def _push(self, user_id: str, title: str, message: str, link_url: str):
        if not self.messaging_url:
            return
        if self.http is None:
            self.http = _requests_session()
        payload = {
            'userId': user_id,
            'kind': 'alert',
            'title': title,
            'message': message,
            'linkUrl': link_url,
        }
        try:
            response = self.http.post(self.messaging_url, json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            logger.warning(f"Push message failed for user {user_id}: {e}", user_id=user_id)
            return
        if response.status_code >= 400:
            logger.warning(f"Messaging service returned {response.status_code}",
                           user_id=user_id, status_code=response.status_code)
