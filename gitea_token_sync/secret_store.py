"""
secret_store
------------

Kubernetes Secret 을 단순한 key-value 저장소처럼 다루는 모듈.

- Secret 이 없는 것은 오류가 아니라 정상 상태(None)로 취급한다.
- put_secret 은 생성 또는 전체 교체(upsert)이며, 기존 값과 병합하지 않는다.
"""

from __future__ import annotations

import base64
import binascii
from typing import Dict, Optional

from kubernetes import client, config
from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError

from .credentials import RemoteIdentityAccount
from .errors import AuthFailed, SecretStoreError
from .logging_utils import get_logger


logger = get_logger(__name__)

DEFAULT_DATA_KEY = "token"
MANAGED_BY_LABEL = {"app.kubernetes.io/managed-by": "gitea-token-sync"}


def load_core_api(kube_context: Optional[str] = None) -> client.CoreV1Api:
    """
    클러스터 안에서 실행 중이면 ServiceAccount 설정을, 아니면 kubeconfig 를 사용한다.
    """
    if kube_context is None:
        try:
            config.load_incluster_config()
            logger.debug("in-cluster Kubernetes 설정을 사용합니다.")
            return client.CoreV1Api()
        except config.ConfigException:
            logger.debug("in-cluster 설정이 없어 kubeconfig 를 사용합니다.")

    try:
        config.load_kube_config(context=kube_context)
    except config.ConfigException as e:
        raise SecretStoreError(f"Kubernetes 설정을 불러올 수 없습니다: {e}", phase="kube-config") from e
    return client.CoreV1Api()


def _decode(data: Optional[Dict[str, str]], ref: str) -> Dict[str, str]:
    decoded: Dict[str, str] = {}
    for key, value in (data or {}).items():
        if value is None:
            continue
        try:
            decoded[key] = base64.b64decode(value, validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as e:
            raise SecretStoreError(f"Secret 값을 해석할 수 없습니다 ({ref}, key={key}): {e}") from e
    return decoded


def _encode(data: Dict[str, str]) -> Dict[str, str]:
    return {k: base64.b64encode(v.encode("utf-8")).decode("ascii") for k, v in data.items()}


class KubernetesSecretStore:
    """한 namespace 에 묶인 Opaque Secret 저장소."""

    def __init__(self, core_api: client.CoreV1Api, namespace: str) -> None:
        self.core_api = core_api
        self.namespace = namespace

    def _ref(self, name: str) -> str:
        return f"{self.namespace}/{name}"

    def get_secret_data(self, name: str) -> Optional[Dict[str, str]]:
        try:
            secret = self.core_api.read_namespaced_secret(name, self.namespace)
        except ApiException as e:
            if e.status == 404:
                logger.debug("Secret 없음: %s", self._ref(name))
                return None
            raise SecretStoreError(f"Secret 조회 실패 ({self._ref(name)}): HTTP {e.status} {e.reason}") from e
        except HTTPError as e:
            raise SecretStoreError(f"Secret 조회 실패 ({self._ref(name)}): Kubernetes API 연결 오류 {e}") from e
        return _decode(secret.data, self._ref(name))

    def get_secret(self, name: str, key: str = DEFAULT_DATA_KEY) -> Optional[str]:
        data = self.get_secret_data(name)
        if data is None:
            return None
        value = data.get(key)
        if value is None:
            logger.debug("Secret %s 에 %s 키가 없습니다.", self._ref(name), key)
        return value

    def put_secret(self, name: str, data: Dict[str, str]) -> None:
        body = client.V1Secret(
            metadata=client.V1ObjectMeta(name=name, namespace=self.namespace, labels=dict(MANAGED_BY_LABEL)),
            data=_encode(data),
            type="Opaque",
        )
        try:
            self.core_api.create_namespaced_secret(self.namespace, body)
            logger.info("Secret 생성: %s", self._ref(name))
            return
        except ApiException as e:
            if e.status != 409:
                raise SecretStoreError(f"Secret 생성 실패 ({self._ref(name)}): HTTP {e.status} {e.reason}") from e
        except HTTPError as e:
            raise SecretStoreError(f"Secret 생성 실패 ({self._ref(name)}): Kubernetes API 연결 오류 {e}") from e

        try:
            self.core_api.replace_namespaced_secret(name, self.namespace, body)
        except ApiException as e:
            raise SecretStoreError(f"Secret 교체 실패 ({self._ref(name)}): HTTP {e.status} {e.reason}") from e
        except HTTPError as e:
            raise SecretStoreError(f"Secret 교체 실패 ({self._ref(name)}): Kubernetes API 연결 오류 {e}") from e
        logger.info("Secret 교체: %s", self._ref(name))

    def delete_secret(self, name: str) -> bool:
        try:
            self.core_api.delete_namespaced_secret(name, self.namespace)
        except ApiException as e:
            if e.status == 404:
                return False
            raise SecretStoreError(f"Secret 삭제 실패 ({self._ref(name)}): HTTP {e.status} {e.reason}") from e
        except HTTPError as e:
            raise SecretStoreError(f"Secret 삭제 실패 ({self._ref(name)}): Kubernetes API 연결 오류 {e}") from e
        logger.info("Secret 삭제: %s", self._ref(name))
        return True


def read_admin_account(
    store: KubernetesSecretStore,
    secret_name: str,
    username: Optional[str] = None,
    password: Optional[str] = None,
) -> RemoteIdentityAccount:
    """
    부트스트랩용 관리자 계정을 읽는다.
    환경변수로 둘 다 주어지면 그것을 우선하고, 아니면 Secret 의 username/password 키를 읽는다.
    """
    if username and password:
        return RemoteIdentityAccount(username=username, password=password)

    data = store.get_secret_data(secret_name) or {}
    user = username or data.get("username")
    pw = password or data.get("password")
    if not user or not pw:
        raise AuthFailed(
            f"관리자 계정 정보를 찾을 수 없습니다 (Secret {secret_name} 의 username/password 또는 "
            "GITEA_ADMIN_USERNAME/GITEA_ADMIN_PASSWORD)",
            phase="account",
        )
    return RemoteIdentityAccount(username=user, password=pw)
