"""Tests for the registry client."""

import base64
import hashlib
import json
from pathlib import Path

import httpx
import pytest

from kubescan.ecr.cancellation import Cancellation
from kubescan.ecr.exceptions import ImageNotFound, MalformedReferenceError, RegistryError, ScanCancelledError
from kubescan.ecr.registry import (
    DEFAULT_REGISTRY,
    MEDIA_TYPE_DOCKER_MANIFEST,
    MEDIA_TYPE_OCI_INDEX,
    ImageName,
    Manifest,
    PulledImage,
    RegistryClient,
    load_docker_credentials,
)


INDEX = json.dumps({
    "schemaVersion": 2,
    "mediaType": MEDIA_TYPE_OCI_INDEX,
    "manifests": [
        {"digest": "sha256:amd64", "platform": {"architecture": "amd64", "os": "linux"}},
    ],
}).encode()

IMAGE_MANIFEST = json.dumps({
    "schemaVersion": 2,
    "mediaType": MEDIA_TYPE_DOCKER_MANIFEST,
    "config": {"digest": "sha256:config"},
    "layers": [{"digest": "sha256:layer1"}, {"digest": "sha256:layer2"}],
}).encode()


class TestImageName:
    """Tests for ImageName.parse."""

    @pytest.mark.parametrize(
        ("image", "expected"),
        [
            ("nginx", (DEFAULT_REGISTRY, "library/nginx", "latest", None)),
            ("nginx:1.25", (DEFAULT_REGISTRY, "library/nginx", "1.25", None)),
            ("docker.io/bitnami/redis:7", (DEFAULT_REGISTRY, "bitnami/redis", "7", None)),
            ("grafana/grafana", (DEFAULT_REGISTRY, "grafana/grafana", "latest", None)),
            ("quay.io/prometheus/node-exporter:v1.7.0", ("quay.io", "prometheus/node-exporter", "v1.7.0", None)),
            ("localhost:5000/app@sha256:abc", ("localhost:5000", "app", None, "sha256:abc")),
            ("ghcr.io/org/app:v1@sha256:abc", ("ghcr.io", "org/app", "v1", "sha256:abc")),
        ],
    )
    def test_parse(self, image: str, expected: tuple) -> None:
        assert tuple(ImageName.parse(image)) == expected

    @pytest.mark.parametrize("image", ["ghcr.io/org/app:", "ghcr.io/org/app@"])
    def test_malformed(self, image: str) -> None:
        with pytest.raises(MalformedReferenceError):
            ImageName.parse(image)

    def test_str_prefers_digest(self) -> None:
        name = ImageName("ghcr.io", "org/app", "v1", "sha256:abc")
        assert str(name) == "ghcr.io/org/app@sha256:abc"
        assert str(name._replace(digest=None)) == "ghcr.io/org/app:v1"

    def test_with_reference(self) -> None:
        name = ImageName.parse("nginx:1.25")
        assert name.with_reference("sha256:abc").digest == "sha256:abc"
        assert name.with_reference("sha256:abc").tag is None
        assert name.with_reference("1.26").tag == "1.26"

    def test_base_name(self) -> None:
        assert ImageName.parse("quay.io/prometheus/node-exporter").base_name == "node-exporter"


class TestManifest:
    def test_image_manifest_blobs(self) -> None:
        manifest = Manifest(MEDIA_TYPE_DOCKER_MANIFEST, "sha256:m", IMAGE_MANIFEST)
        assert not manifest.is_index
        assert manifest.blobs == ["sha256:config", "sha256:layer1", "sha256:layer2"]
        assert manifest.children == []

    def test_index_children(self) -> None:
        manifest = Manifest(MEDIA_TYPE_OCI_INDEX, "sha256:i", INDEX)
        assert manifest.is_index
        assert manifest.blobs == []
        assert [c["digest"] for c in manifest.children] == ["sha256:amd64"]


class TestLoadDockerCredentials:
    """Tests for reading credentials from the Docker config file."""

    def test_auths(self, tmp_path: Path) -> None:
        config = tmp_path / "config.json"
        config.write_text(json.dumps({
            "auths": {
                "https://index.docker.io/v1/": {"auth": base64.b64encode(b"user:pass").decode()},
                "quay.io": {"auth": base64.b64encode(b"robot:token:x").decode()},
                "ghcr.io": {},
            },
            "credsStore": "desktop",
        }))
        assert load_docker_credentials(config) == {
            DEFAULT_REGISTRY: ("user", "pass"),
            "quay.io": ("robot", "token:x"),
        }

    def test_missing_file(self, tmp_path: Path) -> None:
        assert load_docker_credentials(tmp_path / "missing.json") == {}

    def test_invalid_file(self, tmp_path: Path) -> None:
        config = tmp_path / "config.json"
        config.write_text("not json")
        assert load_docker_credentials(config) == {}


def bearer_registry(requests: list):
    """Return a handler for a registry that requires a bearer token."""
    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if request.url.host == "auth.docker.io":
            assert request.url.params["scope"] == "repository:library/nginx:pull"
            return httpx.Response(200, json={"token": "abc123"})
        if request.headers.get("authorization") != "Bearer abc123":
            return httpx.Response(
                401,
                headers={
                    "www-authenticate": (
                        'Bearer realm="https://auth.docker.io/token",'
                        'service="registry.docker.io",'
                        'scope="repository:library/nginx:pull"'
                    ),
                },
            )
        if request.url.path == "/v2/library/nginx/manifests/latest":
            return httpx.Response(
                200,
                headers={"content-type": MEDIA_TYPE_OCI_INDEX, "docker-content-digest": "sha256:index"},
                content=INDEX,
            )
        if request.url.path == "/v2/library/nginx/manifests/sha256:amd64":
            # No digest header, so the digest must be computed
            return httpx.Response(200, headers={"content-type": MEDIA_TYPE_DOCKER_MANIFEST}, content=IMAGE_MANIFEST)
        return httpx.Response(404)
    return handler


class TestRegistryClient:
    """Tests for RegistryClient."""

    @pytest.mark.asyncio
    async def test_get_manifest_with_bearer_auth(self) -> None:
        requests: list = []
        transport = httpx.MockTransport(bearer_registry(requests))
        async with RegistryClient(transport=transport) as registry:
            manifest = await registry.get_manifest(ImageName.parse("nginx"))
            assert manifest.media_type == MEDIA_TYPE_OCI_INDEX
            assert manifest.digest == "sha256:index"
            assert manifest.is_index
            # The token is reused for the same repository
            child = await registry.get_manifest(ImageName.parse("nginx"), "sha256:amd64")
        assert child.digest == f"sha256:{hashlib.sha256(IMAGE_MANIFEST).hexdigest()}"
        assert [r.url.host for r in requests].count("auth.docker.io") == 1

    @pytest.mark.asyncio
    async def test_pull_fetches_children(self) -> None:
        transport = httpx.MockTransport(bearer_registry([]))
        async with RegistryClient(transport=transport) as registry:
            image = await registry.pull(ImageName.parse("nginx"))
        assert image.manifest.is_index
        assert [c.content for c in image.children] == [IMAGE_MANIFEST]

    @pytest.mark.asyncio
    async def test_basic_auth(self) -> None:
        expected = "Basic " + base64.b64encode(b"robot:token").decode()

        def handler(request: httpx.Request) -> httpx.Response:
            if request.headers.get("authorization") != expected:
                return httpx.Response(401, headers={"www-authenticate": 'Basic realm="registry"'})
            return httpx.Response(200, headers={"content-type": MEDIA_TYPE_DOCKER_MANIFEST}, content=IMAGE_MANIFEST)

        credentials = {"registry.local": ("robot", "token")}
        async with RegistryClient(credentials, transport=httpx.MockTransport(handler)) as registry:
            manifest = await registry.get_manifest(ImageName.parse("registry.local/app:v1"))
        assert manifest.blobs[0] == "sha256:config"

    @pytest.mark.asyncio
    async def test_manifest_not_found(self) -> None:
        transport = httpx.MockTransport(lambda request: httpx.Response(404))
        async with RegistryClient(transport=transport) as registry:
            with pytest.raises(ImageNotFound):
                await registry.get_manifest(ImageName.parse("quay.io/org/missing:v1"))

    @pytest.mark.asyncio
    async def test_unauthorized_without_credentials(self) -> None:
        transport = httpx.MockTransport(
            lambda request: httpx.Response(401, headers={"www-authenticate": 'Basic realm="registry"'})
        )
        async with RegistryClient(transport=transport) as registry:
            with pytest.raises(ImageNotFound):
                await registry.get_manifest(ImageName.parse("quay.io/org/private:v1"))

    @pytest.mark.asyncio
    async def test_server_error(self) -> None:
        transport = httpx.MockTransport(lambda request: httpx.Response(500))
        async with RegistryClient(transport=transport) as registry:
            with pytest.raises(RegistryError):
                await registry.get_manifest(ImageName.parse("quay.io/org/app:v1"))

    @pytest.mark.asyncio
    async def test_connection_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async with RegistryClient(transport=httpx.MockTransport(handler)) as registry:
            with pytest.raises(RegistryError):
                await registry.get_manifest(ImageName.parse("quay.io/org/app:v1"))

    @pytest.mark.asyncio
    async def test_push_copies_missing_blobs_and_manifest(self) -> None:
        requests: list = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            path = request.url.path
            if request.method == "HEAD":
                # The config blob is already present in the destination
                return httpx.Response(200 if path.endswith("sha256:config") else 404)
            if request.method == "GET" and request.url.host == "quay.io":
                return httpx.Response(200, content=f"data for {path}".encode())
            if request.method == "POST":
                return httpx.Response(202, headers={"location": "/v2/cache/app/blobs/uploads/session-1"})
            if request.method == "PUT":
                return httpx.Response(201)
            return httpx.Response(400)

        source = ImageName.parse("quay.io/org/app:v1")
        destination = ImageName("cache.local", "cache/app", "v1", None)
        image = PulledImage(source, Manifest(MEDIA_TYPE_DOCKER_MANIFEST, "sha256:m", IMAGE_MANIFEST), [])
        async with RegistryClient(transport=httpx.MockTransport(handler)) as registry:
            await registry.push(image, destination)

        uploads = [r for r in requests if r.method == "PUT" and "/blobs/uploads/" in r.url.path]
        assert [r.url.params["digest"] for r in uploads] == ["sha256:layer1", "sha256:layer2"]
        assert all(r.url.host == "cache.local" for r in uploads)
        assert uploads[0].content == b"data for /v2/org/app/blobs/sha256:layer1"
        manifest_put = requests[-1]
        assert manifest_put.method == "PUT"
        assert manifest_put.url.path == "/v2/cache/app/manifests/v1"
        assert manifest_put.headers["content-type"] == MEDIA_TYPE_DOCKER_MANIFEST
        assert manifest_put.content == IMAGE_MANIFEST

    @pytest.mark.asyncio
    async def test_push_failure(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "HEAD":
                return httpx.Response(200)
            return httpx.Response(403)

        source = ImageName.parse("quay.io/org/app:v1")
        destination = ImageName("cache.local", "cache/app", "v1", None)
        image = PulledImage(source, Manifest(MEDIA_TYPE_DOCKER_MANIFEST, "sha256:m", IMAGE_MANIFEST), [])
        async with RegistryClient(transport=httpx.MockTransport(handler)) as registry:
            with pytest.raises(RegistryError):
                await registry.push(image, destination)

    @pytest.mark.asyncio
    async def test_push_stops_when_cancelled(self) -> None:
        cancellation = Cancellation()
        requests: list = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            if request.method == "HEAD":
                return httpx.Response(404)
            if request.method == "GET":
                return httpx.Response(200, content=b"blob")
            if request.method == "POST":
                return httpx.Response(202, headers={"location": "/v2/cache/app/blobs/uploads/session-1"})
            # The first blob upload completes as the run is cancelled
            cancellation.cancel("timed out")
            return httpx.Response(201)

        source = ImageName.parse("quay.io/org/app:v1")
        destination = ImageName("cache.local", "cache/app", "v1", None)
        image = PulledImage(source, Manifest(MEDIA_TYPE_DOCKER_MANIFEST, "sha256:m", IMAGE_MANIFEST), [])
        async with RegistryClient(transport=httpx.MockTransport(handler)) as registry:
            with pytest.raises(ScanCancelledError):
                await registry.push(image, destination, cancellation)

        puts = [r for r in requests if r.method == "PUT"]
        assert len(puts) == 1
        assert puts[0].url.params["digest"] == "sha256:config"
