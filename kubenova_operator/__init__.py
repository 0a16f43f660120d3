"""KubeNova operator: converges a KubeNova custom resource into its platform workloads."""

__version__ = "1.0.0"
