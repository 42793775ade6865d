"""
Adapters — the only code that touches external tools.

    docker   image build / tag / login / push / rmi
    aws      caller identity, ECR auth and repositories, EKS kubeconfig
    kubectl  nodes, apply, deployment status, events, pods
    http     health probes, webhook posts
    git      revision lookup
"""
