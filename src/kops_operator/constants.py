"""Constants for the Kops Operator."""

# API Group
API_GROUP = "kops.cloud37.dev"
API_GROUP_VERSION = f"{API_GROUP}/v1alpha1"

# Resource Kinds
KIND_CLUSTER = "Kops"
PLURAL_CLUSTER = "kops"

# kops state store object kinds
KOPS_API_VERSION = "kops.k8s.io/v1alpha2"
KOPS_KIND_CLUSTER = "Cluster"
KOPS_KIND_INSTANCE_GROUP = "InstanceGroup"
KOPS_KIND_KEYSET = "Keyset"

# Labels
LABEL_MANAGED_BY = f"{API_GROUP}/managed-by"
LABEL_INSTANCE_GROUP = "kops.k8s.io/instancegroup"
LABEL_KOPS_CLUSTER = "kops.k8s.io/cluster"

# Annotations
ANNOTATION_EXTERNAL_NAME = "crossplane.io/external-name"

# Finalizers
FINALIZER = f"{API_GROUP}/finalizer"

# Field Manager
FIELD_MANAGER = "kops-operator"

# Well-known defaults, overridable through OperatorConfig
DEFAULT_CA_SIGNER_ID = "kubernetes-ca"
DEFAULT_ADMIN_COMMON_NAME = "kops-operator"
DEFAULT_ADMIN_GROUP = "system:masters"
DEFAULT_CERTIFICATE_TTL_HOURS = 18
DEFAULT_APPLY_TARGET = "direct"
DEFAULT_CONNECTION_SECRET_KEY = "kubeconfig"

# Fields the state store fills in and desired specs never carry
DERIVED_CLUSTER_FIELDS = ("configBase", "masterPublicName")

# Deletion policies
DELETION_POLICY_DELETE = "Delete"
DELETION_POLICY_ORPHAN = "Orphan"

# Provisioning states recorded in status.atProvider
PROVISIONING_CREATING = "Creating"
PROVISIONING_UPDATING = "Updating"
PROVISIONING_APPLIED = "Applied"
PROVISIONING_DELETING = "Deleting"
INCOMPLETE_PROVISIONING_STATES = (PROVISIONING_CREATING, PROVISIONING_UPDATING)

# Condition Types
COND_READY = "Ready"
COND_SYNCED = "Synced"

# Condition Reasons
REASON_AVAILABLE = "Available"
REASON_UNAVAILABLE = "Unavailable"
REASON_CREATING = "Creating"
REASON_DELETING = "Deleting"
REASON_RECONCILE_SUCCESS = "ReconcileSuccess"
REASON_RECONCILE_ERROR = "ReconcileError"

# Event Reasons
EVENT_REASON_RECONCILE_STARTED = "ReconcileStarted"
EVENT_REASON_RECONCILE_FAILED = "ReconcileFailed"
EVENT_REASON_VALIDATE_SUCCEEDED = "ValidateSucceeded"
EVENT_REASON_VALIDATE_FAILED = "ValidateFailed"
EVENT_REASON_CLUSTER_CREATED = "ClusterCreated"
EVENT_REASON_CLUSTER_UPDATED = "ClusterUpdated"
EVENT_REASON_CLUSTER_DELETED = "ClusterDeleted"
EVENT_REASON_CONNECTION_PUBLISHED = "ConnectionDetailsPublished"
