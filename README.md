# dinocluster

A library for standing up short-lived Couchbase Server clusters for testing,
and for tearing them down again when they expire.

Nodes can run as Docker containers (one container per node) or as a
single-node install on the local macOS machine.

## Modules

| Module | What it holds |
| --- | --- |
| `dinocluster.deployment` | `Deployer` interface, `ConnectInfo`, and the cluster/node description classes (`DockerClusterInfo`, `LocalClusterInfo`, `CloudClusterInfo`, ...) |
| `dinocluster.dockerapi` | `DockerClient`, a small client for the Docker engine API over its unix socket (default `/var/run/docker.sock`), plus `iter_json_stream` and `pull_and_log` |
| `dinocluster.imagedef` | `ImageDef`, `ImageRef`, `ImageProvider`, `compare_semver`, `compare_image_defs` |
| `dinocluster.imageproviders` | `DockerHubImageProvider`, `GhcrImageProvider`, `HybridImageProvider` |
| `dinocluster.dockercontroller` | `DockerController`: deploy, list and remove node containers and the state stored inside them |
| `dinocluster.dockerdeployer` | `DockerDeployer`: clusters as groups of node containers |
| `dinocluster.localdeploy` | `OsxController` and `LocalDeployer` for a local macOS install |
| `dinocluster.nodecontroller` | `Controller`, a client for a node's management REST interface |
| `dinocluster.clustersetup` | `NodeManager` and `ClusterManager`: initialise a node, join nodes, rebalance |
| `dinocluster.versionident` | `identify`, parsing of version strings |
| `dinocluster.cbdcuuid` | 16-byte cluster identifiers with a hex and a short base32 form |
| `dinocluster.clustermeta` | cluster id, expiry and purpose encoded into a resource name |
| `dinocluster.tarbuilder` | `TarBuilder`, incremental tar archive construction |

Every deployer offers `list_clusters()`, `remove_cluster(cluster_id)`,
`remove_all()`, `cleanup()` and `get_connect_info(cluster_id)`.

## Docker clusters

`HybridImageProvider` first tries Docker Hub (GA releases only, image
`couchbase:<edition>-<version>`) and then GHCR (builds with a build number,
credentials required, image `ghcr.io/cb-vanilla/server:[community-]<version>-<build>`).

`DockerController.deploy_node` creates and starts a labelled container,
records the owner and expiry inside it (at `/var/cbdyncluster/state`) and waits
until the node's management port answers. `ClusterManager` then forms the
nodes into a cluster:

```python
import uuid
from datetime import timedelta

from dinocluster.clustersetup import (
    ClusterManager, SetupNewClusterNodeOptions, SetupNewClusterOptions,
)
from dinocluster.dockerapi import DockerClient
from dinocluster.dockercontroller import DeployNodeOptions
from dinocluster.dockerdeployer import DockerDeployer
from dinocluster.imagedef import ImageDef

deployer = DockerDeployer(DockerClient(), network_name="bridge")
image = deployer.image_provider.get_image(ImageDef(version="7.2.0"))

cluster_id = str(uuid.uuid4())
node = deployer.controller.deploy_node(
    DeployNodeOptions(name="node", cluster_id=cluster_id, image=image,
                      expiry=timedelta(hours=1))
)

password = "password"
ClusterManager().setup_new_cluster(
    SetupNewClusterOptions(
        username="Administrator",
        password=password,
        nodes=[SetupNewClusterNodeOptions(node.ip_address, ["kv", "index", "n1ql", "fts"])],
        kv_memory_quota_mb=256,
    )
)

print(deployer.get_connect_info(cluster_id).conn_str)
```

`DockerDeployer.list_clusters()` groups node containers by their cluster
label. `cleanup()` removes every node whose expiry has passed or is unknown;
`remove_cluster` and `remove_all` log removal failures and carry on, while
`destroy_all_resources()` stops at the first failure. `get_connect_info`
raises `LookupError` for an unknown cluster id.

Note that `nodecontroller.Controller` always authenticates with the user
`Administrator` and the initial default credentials of a fresh node.

## Local macOS install

`LocalDeployer.start_server(version)` parses the version, downloads the macOS
disk image for a GA release into `/tmp/cbinstallers` (unless already there),
mounts it with `hdiutil`, copies the app into `/Applications`, launches it and
waits for the node to come online. Only GA, non-serverless releases are
accepted. The local cluster always has the id `"a"` and is reached at
`couchbase://127.0.0.1` / `http://127.0.0.1:8091`. `remove_cluster` and
`remove_all` ask the app to quit through `osascript`; `cleanup()` does
nothing.

`OsxController.is_installed()` returns `True` when the application bundle is
*not* found under `/Applications`, and `LocalDeployer.list_clusters()` reports
the local cluster on that basis.

## Version strings

```python
from dinocluster.versionident import identify, VersionError

identify("7.2.0")                          # enterprise GA release
identify("community-7.2.0-14")             # community edition, build 14
identify("7.2.0-serverless")               # serverless variant

try:
    identify("7")
except VersionError:
    ...                                    # at least major.minor is required
```

## Cluster names with metadata

```python
from datetime import datetime, timezone
from dinocluster import cbdcuuid
from dinocluster.clustermeta import MetaData, parse

meta = MetaData(cbdcuuid.new(), datetime(2030, 1, 1, tzinfo=timezone.utc))
name = meta.format()        # "cbdc2_<short id>_20300101-000000"
assert parse(name) == meta
assert parse("something-else") is None
```

## What the package does not do

- There is no command-line program; everything is used as a library.
- `DockerDeployer` has no one-call "create cluster" method: nodes are deployed
  with `DockerController.deploy_node` and joined with `ClusterManager`, as
  shown above.
- No serverless images are built; the image providers only pull existing
  images.
- Cloud-hosted clusters are only described (`CloudClusterInfo`,
  `clustermeta`); there is no deployer that creates or removes them.

## Running the tests

Install the `test` extra and run pytest from the project directory.