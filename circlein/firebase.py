import logging

import firebase_admin
from firebase_admin import auth as firebase_auth
from firebase_admin import credentials

logger = logging.getLogger(__name__)


class FirebaseClient:
    """Thin wrapper over the Firebase Admin SDK, initialised on first use"""

    def __init__(self, project_id: str | None, credentials_path: str | None = None, app_name: str = "circlein"):
        self.project_id = project_id
        self.credentials_path = credentials_path
        self.app_name = app_name
        self._app = None

    def _get_app(self):
        if self._app is not None:
            return self._app
        try:
            self._app = firebase_admin.get_app(self.app_name)
            return self._app
        except ValueError:
            pass

        options = {"projectId": self.project_id}
        if self.credentials_path:
            cred = credentials.Certificate(self.credentials_path)
            logger.info("Firebase Admin initialized with service account")
        else:
            cred = credentials.ApplicationDefault()
            logger.info("Firebase Admin initialized with default credentials")
        self._app = firebase_admin.initialize_app(cred, options, name=self.app_name)
        return self._app

    def create_custom_token(self, uid: str, claims: dict) -> str:
        token = firebase_auth.create_custom_token(uid, claims, app=self._get_app())
        if isinstance(token, bytes):
            token = token.decode("utf-8")
        logger.info(f"🔑 Minted custom token for {uid}")
        return token
