from kubernetes import client, config
from loguru import logger


def get_core_v1() -> client.CoreV1Api:
    """Build a CoreV1 client from the in-cluster service account, or the local kubeconfig."""
    try:
        config.load_incluster_config()
        logger.debug("Loaded in-cluster Kubernetes configuration")
    except config.ConfigException:
        config.load_kube_config()
        logger.debug("Loaded Kubernetes configuration from kubeconfig")
    return client.CoreV1Api()
