# kubeprobe

Building blocks for tools that inspect a Kubernetes cluster and run
experiments against it. Kubernetes objects are handled as plain dictionaries
shaped like the API's JSON.

## What is in the package

- `kubeprobe.config` reads the settings from `STEADYBIT_EXTENSION_*`
  environment variables: `Specification.from_environ(environ)` and
  `load_configuration(environ)`. Both raise `ConfigurationError` when a
  required value is missing or a value cannot be parsed.
  `Specification.uses_role_based_access_control()` is true when a namespace is
  configured; `validate_configuration(config)` logs notable settings.
- `kubeprobe.permissions` runs every required permission through a review
  callable: `check_permissions(review, namespace)` calls
  `review(namespace=..., verb=..., group=..., resource=..., subresource=...)`
  and returns a `PermissionCheckResult`. Missing optional permissions are
  recorded as `WARN`; a missing required one raises `MissingPermissionsError`.
  The result answers questions such as `is_scale_deployment_permitted()` or
  `can_read_namespaces()`. `mock_all_permitted()` returns a result in which
  everything is granted.
- `kubeprobe.transformers` trims each kind of object down to the fields that
  are read later (`transform_pod`, `transform_ingress`, ...).
- `kubeprobe.store.ResourceStore` caches objects of one `ResourceKind` by
  namespace and name, trims them with the kind's transformer and calls
  subscribed handlers on every add, update and delete.
  `match_label_selector(selector, labels)` evaluates a LabelSelector with
  `matchLabels` and `matchExpressions`.
- `kubeprobe.client.KubernetesClient` holds one store per watched kind (which
  kinds depend on the configuration and permissions) and answers the usual
  queries: running pods, pods by label selector, services selecting a pod,
  ready node count, events since a time (oldest first), the HPA of a
  deployment, HAProxy ingress classes and more. `notify(handler)` and
  `stop_notify(handler)` manage change handlers.
- `kubeprobe.notifications.trigger_on_resource_change(client, *kinds)` returns
  a `queue.Queue` that receives the `ResourceKind` of every changed object of
  the given kinds.
- `kubeprobe.ingress.IngressEditor` reads ingresses from the cache or, with
  `force_update=True`, from an ingress API object you supply
  (`get_ingress(namespace, name)` and `update_ingress(namespace, ingress)`).
  `update_ingress_annotation` prepends a block to an annotation and
  `remove_annotation_block` removes the block of one execution id; both retry
  up to 10 times when the API raises `ConflictError`.
- `kubeprobe.owners.owner_references(client, metadata)` follows owner
  references through replica sets, deployments, daemon sets and stateful sets
  in the client's caches.
- `kubeprobe.discovery` builds discovery attributes: pod names, container ids,
  host names and domain names of a workload's pods
  (`get_pod_based_attributes`), service names, and selected node labels as
  `k8s.label.*` attributes (`add_node_labels`). `describe_attributes()` lists
  attribute labels.
- `kubeprobe.kubectl_action.KubectlAction` starts a command in the background,
  reports its status from its exit code and output, kills it on stop and runs
  an optional rollback command, guarded by an optional precondition command.

## Installation

```
pip install .
```

To run the test suite:

```
pip install ".[test]"
pytest
```

## Example

```python
from kubeprobe.discovery import add_node_labels

nodes = [{"metadata": {"name": "node1",
                       "labels": {"topology.kubernetes.io/zone": "zone-a"}}}]
print(add_node_labels(nodes, "node1", {}))
# {'k8s.label.topology.kubernetes.io/zone': ['zone-a']}
```

## What the package does not do

- It does not connect to a Kubernetes API server. There is no kubeconfig
  loading and no watch loop: objects are fed into the stores through
  `KubernetesClient.store(kind)`, and access reviews and direct ingress reads
  and writes go through callables and objects you supply.
- It has no command-line program and no HTTP endpoints; it is a library.
- It does not compute workload quality scores or advice definitions.