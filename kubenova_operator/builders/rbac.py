from .common import SERVICE_ACCOUNT_NAME, common_labels


def cluster_role_binding_name(name: str, namespace: str) -> str:
    """Deterministic so deletion can find it without a lookup."""
    return f"kube-nova-{namespace}-{name}-cluster-admin"


def _rbac_labels(name: str, namespace: str) -> dict:
    labels = common_labels(name)
    labels["app.kubernetes.io/namespace"] = namespace
    labels["app.kubernetes.io/component"] = "rbac"
    return labels


def build_service_account(name: str, namespace: str) -> dict:
    return {
        "apiVersion": "v1",
        "kind": "ServiceAccount",
        "metadata": {
            "name": SERVICE_ACCOUNT_NAME,
            "namespace": namespace,
            "labels": _rbac_labels(name, namespace),
        },
    }


def build_cluster_role_binding(name: str, namespace: str) -> dict:
    # Cluster-scoped: owner references would not cascade, so none is set.
    return {
        "apiVersion": "rbac.authorization.k8s.io/v1",
        "kind": "ClusterRoleBinding",
        "metadata": {
            "name": cluster_role_binding_name(name, namespace),
            "labels": _rbac_labels(name, namespace),
        },
        "subjects": [{
            "kind": "ServiceAccount",
            "name": SERVICE_ACCOUNT_NAME,
            "namespace": namespace,
        }],
        "roleRef": {
            "apiGroup": "rbac.authorization.k8s.io",
            "kind": "ClusterRole",
            "name": "cluster-admin",
        },
    }
