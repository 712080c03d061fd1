"""
Utilities for working with Docker registries.
"""

import base64
import hashlib
import json
import logging
import os
import re
from collections import namedtuple
from pathlib import Path
from urllib.parse import urlparse

import httpx

from .exceptions import ImageNotFound, MalformedReferenceError, RegistryError


logger = logging.getLogger(__name__)


#: The default registry, used when no other registry is specified
DEFAULT_REGISTRY = "registry-1.docker.io"

#: Registry names that refer to Docker Hub but are not real registries
DOCKER_HUB_ALIASES = {"docker.io", "index.docker.io"}

MEDIA_TYPE_DOCKER_MANIFEST = 'application/vnd.docker.distribution.manifest.v2+json'
MEDIA_TYPE_DOCKER_MANIFEST_LIST = 'application/vnd.docker.distribution.manifest.list.v2+json'
MEDIA_TYPE_OCI_MANIFEST = 'application/vnd.oci.image.manifest.v1+json'
MEDIA_TYPE_OCI_INDEX = 'application/vnd.oci.image.index.v1+json'

#: The manifest media types that we ask for, in order of preference
MANIFEST_MEDIA_TYPES = (
    MEDIA_TYPE_OCI_INDEX,
    MEDIA_TYPE_DOCKER_MANIFEST_LIST,
    MEDIA_TYPE_OCI_MANIFEST,
    MEDIA_TYPE_DOCKER_MANIFEST,
)

#: The media types that indicate a multi-platform index
INDEX_MEDIA_TYPES = {MEDIA_TYPE_OCI_INDEX, MEDIA_TYPE_DOCKER_MANIFEST_LIST}

#: Regex used to extract the parameters from a www-authenticate header
AUTH_PARAM_REGEX = re.compile(r'(\w+)="([^"]*)"')


class ImageName(namedtuple('ImageName', ['registry', 'repository', 'tag', 'digest'])):
    """
    Class representing a fully-qualified image name.

    Attributes:
      registry: The registry host for the image.
      repository: The repository for the image.
      tag: The tag for the image. Can be ``None`` if the image is addressed by digest.
      digest: The digest for the image. Can be ``None`` if the image is addressed by tag.
    """
    @property
    def reference(self):
        return self.digest or self.tag

    @property
    def base_name(self):
        """
        The last path segment of the repository.
        """
        return self.repository.rsplit('/', 1)[-1]

    def with_reference(self, reference):
        """
        Return a copy of this name addressing the given tag or digest.
        """
        if ':' in reference:
            return self._replace(tag = None, digest = reference)
        else:
            return self._replace(tag = reference, digest = None)

    def __str__(self):
        if self.digest:
            return f'{self.registry}/{self.repository}@{self.digest}'
        else:
            return f'{self.registry}/{self.repository}:{self.tag}'

    @classmethod
    def parse(cls, image):
        """
        Return an ``ImageName`` for the given image string.

        The image should be of the form `[registry '/']repository['@' sha | ':' tag]`.
        """
        original_image = image
        # First, determine if we have a registry component
        # For our purposes, the first component is a registry if it contains a dot
        # (DNS name or IP address), a colon (port) or is the string "localhost"
        registry, _, path = image.partition('/')
        if not path or (all(c not in registry for c in {'.', ':'}) and registry != "localhost"):
            registry, path = DEFAULT_REGISTRY, image
        # docker.io isn't a real registry, so use the default registry instead
        if registry in DOCKER_HUB_ALIASES:
            registry = DEFAULT_REGISTRY
        # Next, split the path into repository and reference
        tag = digest = None
        if '@' in path:
            path, _, digest = path.partition('@')
        # A tag can only appear in the last path segment, as a registry port is already removed
        if ':' in path.rsplit('/', 1)[-1]:
            path, _, tag = path.rpartition(':')
        elif not digest:
            tag = 'latest'
        if not path or digest == '' or tag == '':
            raise MalformedReferenceError(f'invalid image reference: {original_image}')
        # Official images on Docker Hub live under the library namespace
        if registry == DEFAULT_REGISTRY and '/' not in path:
            path = f'library/{path}'
        return cls(registry, path, tag, digest)


class Manifest(namedtuple('Manifest', ['media_type', 'digest', 'content'])):
    """
    Class representing a manifest as stored in a registry.

    Attributes:
      media_type: The media type of the manifest.
      digest: The content digest of the manifest.
      content: The raw bytes of the manifest.
    """
    def json(self):
        return json.loads(self.content)

    @property
    def is_index(self):
        return self.media_type in INDEX_MEDIA_TYPES

    @property
    def blobs(self):
        """
        The digests of the blobs referenced by an image manifest.
        """
        if self.is_index:
            return []
        manifest = self.json()
        return [manifest['config']['digest']] + [layer['digest'] for layer in manifest.get('layers', [])]

    @property
    def children(self):
        """
        The entries of an index manifest.
        """
        return self.json().get('manifests', []) if self.is_index else []


class PulledImage(namedtuple('PulledImage', ['name', 'manifest', 'children'])):
    """
    Class representing an image whose manifests have been fetched from its origin.

    Attributes:
      name: The ``ImageName`` the image was pulled from.
      manifest: The top-level ``Manifest``.
      children: The child manifests if the top-level manifest is an index.
    """


def load_docker_credentials(config_path = None):
    """
    Return a dictionary of registry -> (username, password) from the Docker config file.
    """
    if config_path is None:
        config_dir = os.environ.get('DOCKER_CONFIG', Path.home() / '.docker')
        config_path = Path(config_dir) / 'config.json'
    try:
        config = json.loads(Path(config_path).read_text())
    except FileNotFoundError:
        return {}
    except (OSError, ValueError) as exc:
        logger.warning(f'Unable to read Docker config {config_path}: {exc}')
        return {}
    credentials = {}
    for registry, entry in config.get('auths', {}).items():
        if not entry.get('auth'):
            continue
        try:
            username, password = base64.b64decode(entry['auth']).decode().split(':', 1)
        except (ValueError, UnicodeDecodeError):
            logger.warning(f'Ignoring malformed credentials for {registry}')
            continue
        # Entries can be URLs, e.g. https://index.docker.io/v1/
        registry = urlparse(registry).netloc or registry
        if registry in DOCKER_HUB_ALIASES:
            registry = DEFAULT_REGISTRY
        credentials[registry] = (username, password)
    return credentials


class RegistryClient:
    """
    Client for the registry HTTP API, used to inspect and copy images.

    Must be used as an async context manager.
    """
    def __init__(self, credentials = None, transport = None, timeout = 60.0):
        #: Dictionary of registry -> (username, password)
        self.credentials = dict(credentials or {})
        self._transport = transport
        self._timeout = timeout
        self._client = None
        # Authorization headers, indexed by (registry, repository)
        self._authorizations = {}

    async def __aenter__(self):
        self._client = httpx.AsyncClient(
            transport = self._transport,
            timeout = self._timeout,
            follow_redirects = True
        )
        return self

    async def __aexit__(self, *exc_info):
        await self._client.aclose()
        self._client = None

    def add_credentials(self, registry, username, password):
        self.credentials[registry] = (username, password)

    def _url(self, name, path):
        return f'https://{name.registry}/v2/{name.repository}/{path}'

    async def _authenticate(self, name, response):
        """
        Return an authorization header that answers the challenge in the given response.
        """
        scheme, _, params = response.headers.get('www-authenticate', '').partition(' ')
        params = dict(AUTH_PARAM_REGEX.findall(params))
        credentials = self.credentials.get(name.registry)
        if scheme.lower() == 'basic':
            if not credentials:
                return None
            token = base64.b64encode(':'.join(credentials).encode()).decode()
            return f'Basic {token}'
        elif scheme.lower() == 'bearer' and 'realm' in params:
            query = dict(
                service = params.get('service', name.registry),
                scope = params.get('scope', f'repository:{name.repository}:pull')
            )
            response = await self._client.get(
                params['realm'],
                params = query,
                auth = httpx.BasicAuth(*credentials) if credentials else None
            )
            response.raise_for_status()
            body = response.json()
            return f"Bearer {body.get('token') or body.get('access_token')}"
        else:
            return None

    async def _request(self, method, name, url, **kwargs):
        key = (name.registry, name.repository)
        headers = dict(kwargs.pop('headers', {}))
        if key in self._authorizations:
            headers['Authorization'] = self._authorizations[key]
        try:
            response = await self._client.request(method, url, headers = headers, **kwargs)
            # On a 401, answer the challenge and try again
            # This also handles a token whose scope does not cover the request
            if response.status_code == 401:
                authorization = await self._authenticate(name, response)
                if authorization:
                    self._authorizations[key] = authorization
                    headers['Authorization'] = authorization
                    response = await self._client.request(method, url, headers = headers, **kwargs)
        except (httpx.HTTPError, ValueError) as exc:
            raise RegistryError(f'{method} {url} failed: {exc}') from exc
        return response

    def _raise_for_status(self, response, action):
        if response.is_error:
            raise RegistryError(f'unable to {action}: HTTP {response.status_code}')

    async def get_manifest(self, name, reference = None):
        """
        Return the ``Manifest`` for the given image name and optional tag or digest.
        """
        reference = reference or name.reference
        response = await self._request(
            'GET',
            name,
            self._url(name, f'manifests/{reference}'),
            headers = { 'Accept': ', '.join(MANIFEST_MEDIA_TYPES) }
        )
        # When a repository isn't accessible, the response is a 401 (could exist but be private)
        if response.status_code in {401, 404}:
            raise ImageNotFound(str(name.with_reference(reference)))
        self._raise_for_status(response, f'fetch manifest for {name}')
        content = response.content
        media_type = response.headers.get('content-type', '').split(';')[0].strip()
        if media_type not in MANIFEST_MEDIA_TYPES:
            try:
                media_type = json.loads(content).get('mediaType', media_type)
            except ValueError:
                raise RegistryError(f'invalid manifest for {name}')
        # The digest is in a response header, but not all registries send it
        digest = (
            response.headers.get('docker-content-digest') or
            f'sha256:{hashlib.sha256(content).hexdigest()}'
        )
        return Manifest(media_type, digest, content)

    async def pull(self, name):
        """
        Fetch the manifests for the given image so that it can be pushed elsewhere.
        """
        manifest = await self.get_manifest(name)
        children = []
        for entry in manifest.children:
            children.append(await self.get_manifest(name, entry['digest']))
        return PulledImage(name, manifest, children)

    async def _blob_exists(self, name, digest):
        response = await self._request('HEAD', name, self._url(name, f'blobs/{digest}'))
        return response.status_code == 200

    async def _copy_blob(self, source, destination, digest):
        if await self._blob_exists(destination, digest):
            logger.debug(f'Blob {digest} already present in {destination.registry}/{destination.repository}')
            return
        response = await self._request('GET', source, self._url(source, f'blobs/{digest}'))
        self._raise_for_status(response, f'fetch blob {digest} from {source}')
        data = response.content
        # Use a monolithic upload: start an upload session then put the whole blob
        uploads_url = self._url(destination, 'blobs/uploads/')
        response = await self._request('POST', destination, uploads_url)
        self._raise_for_status(response, f'start blob upload to {destination}')
        location = response.headers.get('location')
        if not location:
            raise RegistryError(f'no upload location returned by {destination.registry}')
        upload_url = httpx.URL(uploads_url).join(location).copy_merge_params({ 'digest': digest })
        response = await self._request(
            'PUT',
            destination,
            upload_url,
            content = data,
            headers = { 'Content-Type': 'application/octet-stream' }
        )
        self._raise_for_status(response, f'upload blob {digest} to {destination}')

    async def put_manifest(self, name, manifest, reference = None):
        response = await self._request(
            'PUT',
            name,
            self._url(name, f'manifests/{reference or name.reference}'),
            content = manifest.content,
            headers = { 'Content-Type': manifest.media_type }
        )
        self._raise_for_status(response, f'push manifest to {name}')

    async def push(self, image, destination, cancellation = None):
        """
        Push a pulled image to the given destination name.

        Manifests are copied byte-for-byte, so the digests are preserved. If a cancellation
        is given, it is checked before each blob is copied.
        """
        for manifest in image.children + [image.manifest]:
            for digest in manifest.blobs:
                if cancellation is not None:
                    cancellation.check()
                await self._copy_blob(image.name, destination, digest)
        for child in image.children:
            await self.put_manifest(destination, child, child.digest)
        await self.put_manifest(destination, image.manifest)
