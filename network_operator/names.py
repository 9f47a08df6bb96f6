"""Well-known object names, labels and annotations."""

# Name of the singleton desired-config object. Every other name is ignored.
OPERATOR_CONFIG = "cluster"

# Name of the cluster-wide network config object.
CLUSTER_CONFIG = "cluster"

OPERATOR_API_VERSION = "operator.openshift.io/v1"
OPERATOR_KIND = "Network"
CLUSTER_CONFIG_API_VERSION = "config.openshift.io/v1"
CLUSTER_CONFIG_KIND = "Network"
INFRASTRUCTURE_KIND = "Infrastructure"
INFRASTRUCTURE_NAME = "cluster"

# Namespace holding the applied record, the MTU record and the probe job.
APPLIED_NAMESPACE = "openshift-network-operator"
APPLIED_PREFIX = "applied-"

# Config objects in APPLIED_NAMESPACE managed by the operator itself.
OPERATOR_LOCK = "network-operator-lock"

MTU_CM_NAME = "mtu"
MTU_CM_NAMESPACE = APPLIED_NAMESPACE
MTU_PROBER_JOB = "mtu-prober"

CLOUD_NETWORK_CONFIG_NAMESPACE = "openshift-cloud-network-config-controller"

# Rendered workloads are stamped with this label to scope their status reporting.
# An explicit empty value opts the workload out.
GENERATE_STATUS_LABEL = "networkoperator.openshift.io/generates-operator-status"
MACHINE_CONFIG_ROLE_LABEL = "machineconfiguration.openshift.io/role"

# Objects carrying this annotation never contribute to the degraded condition.
IGNORE_OBJECT_ERROR_ANNOTATION = "networkoperator.openshift.io/ignore-errors"

# Objects carrying this annotation belong to another (management) cluster.
CLUSTER_NAME_ANNOTATION = "network.operator.openshift.io/cluster-name"

STANDALONE_CLUSTER_NAME = "default"

# Status object published by the aggregator.
CLUSTER_OPERATOR_NAME = "network"
