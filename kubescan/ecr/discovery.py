"""
Kubernetes integration for discovering the images running in a cluster.
"""

import contextlib
import logging
import os
from pathlib import Path

import yaml

from kubernetes_asyncio import client
from kubernetes_asyncio.client import ApiClient, Configuration
from kubernetes_asyncio.client.exceptions import ApiException
from kubernetes_asyncio.config import ConfigException, load_incluster_config
from kubernetes_asyncio.config.kube_config import KubeConfigLoader

from .exceptions import DiscoveryError
from .reference import is_ecr_reference


logger = logging.getLogger(__name__)


def default_kubeconfig_path():
    return os.environ.get('KUBECONFIG', str(Path.home() / '.kube' / 'config')).split(os.pathsep)[0]


async def _load_kubeconfig(client_config, kubeconfig_path):
    try:
        with open(kubeconfig_path) as f:
            config_dict = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as exc:
        raise DiscoveryError(f'unable to load kubeconfig {kubeconfig_path}: {exc}') from exc
    loader = KubeConfigLoader(
        config_dict = config_dict,
        config_base_path = os.path.dirname(os.path.abspath(kubeconfig_path))
    )
    await loader.load_and_set(client_config)


@contextlib.asynccontextmanager
async def kube_api_client(kubeconfig_path = None):
    """
    Async context manager that yields an api client for the cluster.

    The in-cluster configuration is used if available, otherwise the kubeconfig file.
    """
    client_config = Configuration()
    try:
        load_incluster_config(client_configuration = client_config)
    except ConfigException:
        kubeconfig_path = kubeconfig_path or default_kubeconfig_path()
        logger.info(f'Not running in a cluster, using kubeconfig {kubeconfig_path}')
        try:
            await _load_kubeconfig(client_config, kubeconfig_path)
        except ConfigException as exc:
            raise DiscoveryError(f'invalid kubeconfig {kubeconfig_path}: {exc}') from exc
    async with ApiClient(configuration = client_config) as api_client:
        yield api_client


def pod_images(pod):
    """
    Return the images of all the containers and init containers in the given pod.
    """
    containers = list(pod.spec.containers or []) + list(pod.spec.init_containers or [])
    return [container.image for container in containers if container.image]


async def list_running_images(api_client, namespaces, include_non_ecr_images = True):
    """
    Return the set of distinct images used by the pods in the given namespaces.
    """
    core = client.CoreV1Api(api_client)
    images = set()
    for namespace in namespaces:
        try:
            pods = await core.list_namespaced_pod(namespace)
        except ApiException as exc:
            raise DiscoveryError(f'unable to list pods in namespace {namespace}: {exc.reason}') from exc
        except Exception as exc:
            raise DiscoveryError(f'unable to list pods in namespace {namespace}: {exc}') from exc
        for pod in pods.items:
            images.update(
                image
                for image in pod_images(pod)
                if include_non_ecr_images or is_ecr_reference(image)
            )
    logger.info(f'Discovered {len(images)} images in namespaces: {", ".join(namespaces)}')
    return images
