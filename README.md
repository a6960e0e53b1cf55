# alumetkit

Building blocks for collecting resource and energy measurements on Linux
machines and writing them out. Sources read sysfs and cgroup files and return
lists of `MeasurementPoint`s; outputs write such lists to a CSV file or to
InfluxDB.

## Measurements

`alumetkit.measurement` defines the data the rest of the package passes
around:

- `Metric`: a name, a unit (display and unique names) and a description.
- `MeasurementPoint`: a timestamp (`datetime`), a `Metric`, a value, the
  resource and consumer it concerns (kind and id), and a dict of attributes.
  `with_attr(key, value)` sets an attribute and returns the point.

## Outputs

- `alumetkit.csv_helper.CsvHelper(delimiter, escaped_quote)`:
  `escape_string` quotes a value holding the delimiter, a quote or a line
  break; `writeln(stream, record)` writes one record to a text stream.
- `alumetkit.csv_output.CsvOutput(config)`: writes points to the file named by
  `CsvConfig.output_path` (default `alumet-output.csv`, delimiter `;`). The
  header is built from the first non-empty batch; attributes that appear later
  go into a `__late_attributes` column as `key=value` pairs, with `=` escaped
  by `escape_late_attribute`. The unit can be appended to the metric name
  (`append_unit_to_metric_name`, `use_unit_display_name`). It is a context
  manager; `close()` closes the file.
- `alumetkit.line_protocol`: `LineProtocolBuilder` builds InfluxDB line
  protocol text (`measurement`, `tag`, `field_float`, `field_int`,
  `field_uint`, `field_string`, `field_bool`, `timestamp`, `build`), and
  `escape_string` escapes the special characters. `InfluxClient(host, token)`
  posts data to `<host>/api/v2/write` with nanosecond precision; `test_write`
  sends an empty body to check access.
- `alumetkit.influxdb_output`: `build_line_protocol` turns points into line
  protocol. Resources and consumers become tags; attributes become tags or
  fields according to `AttributeAs` and the override sets, and keys that clash
  with reserved ones get the `alumet_attribute__` prefix. `InfluxDbOutput`
  checks the connection when created and sends each batch with `write`;
  network failures are raised as `ConnectionError`.

## Sources and parsers

- `alumetkit.cgroupv2.CgroupV2Metric.from_str`: parses a cgroup v2 `cpu.stat`
  file (`usage_usec`, `user_usec`, `system_usec`).
- `alumetkit.k8s`: `list_all_k8s_pods_file` and `list_metric_file_in_dir` find
  pod cgroups and open their `cpu.stat` files as `CgroupV2MetricFile`s;
  `gather_value` reads one. `get_existing_pods` and `get_pod_name` look up pod
  names through the Kubernetes API, getting a token by running
  `kubectl create token alumet-reader`; they return empty results when the API
  cannot be reached.
- `alumetkit.k8s_probe`: `K8sProbe.poll` reports the CPU time used by a pod
  since the previous poll, with `CounterDiff` handling counter wrap-around.
  `probe_from_created_path` builds a probe for a new `.slice` directory.
  `K8sConfig` holds the settings.
- `alumetkit.oar2`: `scan_jobs` opens an `OarJobSource` for every running OAR
  job under the cgroup root of `Oar2Config`; `source_for_job` does so for one
  new job; `OarJobSource.poll` returns its CPU time and memory usage.
- `alumetkit.jetson`: `detect_ina_sensors` finds the INA3221 sensors of NVIDIA
  Jetson devices (both sysfs layouts, through `detect_hierarchy_modern` and
  `detect_hierarchy_old_v4`); `JetsonInaSource.open_sensors` opens their files
  and `poll` reads them.
- `alumetkit.perf_events`: `parse_hardware`, `parse_software` and
  `parse_cache` turn event names into `NamedPerfEvent`s, raising
  `UnknownEventError` for unknown ones; `parse_cpu_list` and `online_cpus`
  read CPU lists in the kernel's format.

## What it does not do

There is no command-line program and no scheduler: nothing polls the sources
on a timer or watches directories for new pods or jobs. The caller calls
`poll` and hands the points to an output. `perf_events` only parses event
names; it does not open or read perf counters. There is no support for
desktop or server NVIDIA GPUs, only Jetson INA sensors.

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Example

```python
from alumetkit.csv_helper import CsvHelper
from alumetkit.line_protocol import LineProtocolBuilder
from alumetkit.perf_events import parse_cpu_list

helper = CsvHelper(",", '""')
print(helper.escape_string('abcd"efg'))   # "abcd""efg"

builder = LineProtocolBuilder()
builder.measurement("cpu").tag("host", "node1").field_uint("value", 42).timestamp(0)
print(builder.build())                     # cpu,host=node1 value=42u 0

print(parse_cpu_list("0-2,8"))             # [0, 1, 2, 8]
```