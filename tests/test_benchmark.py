# End-to-end runs of the benchmark driver on small Matrix Market directories.

import csv

import numpy as np
import pytest
import scipy.io
import scipy.sparse as sp
import torch
from triton.runtime.errors import OutOfResources

from spmvbench import BenchConfig, ComputationKind, CoordinateMatrix, IngestionError
from spmvbench import benchmark
from spmvbench.benchmark import benchmark_matrix, reset, run_directory, time_kernel
from spmvbench.cli import main
from spmvbench.performance import CSV_FIELDS

WORKERS = (1, 2, 4)


def write_matrix(directory, name, matrix):
    scipy.io.mmwrite(str(directory / name), sp.coo_matrix(matrix))


def example_dense():
    return np.array([[1.0, 0.0, 2.0, 0.0],
                     [0.0, 3.0, 0.0, 0.0],
                     [4.0, 0.0, 5.0, 0.0],
                     [0.0, 0.0, 0.0, 6.0]])


def config_for(tmp_path, **kwargs):
    values = dict(matrix_dir=tmp_path / "matrices", output_csv=tmp_path / "perf.csv",
                  hack_size=2, repetitions=2, worker_counts=WORKERS, use_gpu=False)
    values.update(kwargs)
    return BenchConfig(**values)


def test_benchmark_matrix_records_every_kind_in_order(tmp_path):
    coo = CoordinateMatrix.from_dense(example_dense(), name="example")
    result = benchmark_matrix(coo, config_for(tmp_path))

    kinds = [r.kind for r in result.records]
    assert kinds == (
        [ComputationKind.SERIAL_CSR, ComputationKind.SERIAL_HLL]
        + [ComputationKind.PARALLEL_CSR] * len(WORKERS)
        + [ComputationKind.PARALLEL_HLL] * len(WORKERS)
    )
    assert [r.workers for r in result.records[2:]] == list(WORKERS) * 2
    assert result.records[0].relative_error is None
    assert all(r.relative_error < 1e-4 for r in result.records[1:])
    assert all(r.nnz == 6 and r.matrix == "example" for r in result.records)
    assert result.warnings == []
    assert result.errors == []


def test_time_kernel_zeroes_output_and_checks_baseline():
    calls = []

    def kernel(out):
        calls.append(out.copy())
        out += 1.0

    out = np.full(3, 99.0)
    mean, err, advisories = time_kernel(kernel, out, 3, baseline=np.ones(3))
    # warm-up plus three timed runs, each starting from a zeroed buffer
    assert len(calls) == 4
    assert all(np.array_equal(c, np.zeros(3)) for c in calls)
    assert mean >= 0.0
    assert err == 0.0
    assert advisories == []


def test_time_kernel_mismatch_is_collected_not_raised():
    def wrong(out):
        out += 2.0

    _, err, advisories = time_kernel(wrong, np.zeros(2), 2, baseline=np.ones(2),
                                     matrix="m", kind=ComputationKind.SERIAL_HLL)
    assert err == pytest.approx(1.0)
    assert len(advisories) == 2
    assert advisories[0].kind == "serial-hll"


def test_reset():
    y = np.arange(4.0)
    assert np.array_equal(reset(y), np.zeros(4))


def test_gpu_failure_is_isolated(tmp_path, monkeypatch):
    from spmvbench.errors import DeviceError

    def broken(*args, **kwargs):
        raise DeviceError("launch failed")

    monkeypatch.setattr(benchmark.gpu, "gpu_available", lambda: True)
    monkeypatch.setattr(benchmark.gpu, "matvec_gpu", broken)

    coo = CoordinateMatrix.from_dense(example_dense(), name="example")
    result = benchmark_matrix(coo, config_for(tmp_path, use_gpu=True))
    assert len(result.errors) == 2
    assert all(r.kind not in (ComputationKind.GPU_CSR, ComputationKind.GPU_HLL)
               for r in result.records)
    assert len(result.records) == 2 + 2 * len(WORKERS)


def test_run_directory_skips_bad_matrix_and_continues(tmp_path, monkeypatch):
    matrices = tmp_path / "matrices"
    matrices.mkdir()
    write_matrix(matrices, "a_example.mtx", example_dense())
    write_matrix(matrices, "b_bad.mtx", np.eye(3))
    write_matrix(matrices, "c_random.mtx", sp.random(50, 40, density=0.1, random_state=1))
    (matrices / ".hidden.mtx").write_text("ignored")

    read = benchmark.read_matrix_market

    def read_with_bad_column(path):
        coo = read(path)
        if path.name == "b_bad.mtx":
            coo.cols[0] = 9
        return coo

    monkeypatch.setattr(benchmark, "read_matrix_market", read_with_bad_column)
    run = run_directory(config_for(tmp_path))

    names = [r.matrix for r in run.log]
    assert list(run.failed) == ["b_bad.mtx"]
    assert "column index 9" in run.failed["b_bad.mtx"]
    assert names[0] == "a_example.mtx"
    assert set(names) == {"a_example.mtx", "c_random.mtx"}
    assert len(run.log) == 2 * (2 + 2 * len(WORKERS))


def test_run_directory_missing(tmp_path):
    with pytest.raises(IngestionError):
        run_directory(config_for(tmp_path))


def test_cli_writes_csv(tmp_path):
    matrices = tmp_path / "matrices"
    matrices.mkdir()
    write_matrix(matrices, "example.mtx", example_dense())
    out = tmp_path / "results" / "perf.csv"

    code = main([str(matrices), "-o", str(out), "-H", "2", "-r", "2", "-t", "1,2", "--no-gpu", "-q"])
    assert code == 0

    with open(out, newline="") as f:
        rows = list(csv.DictReader(f))
    assert [r["computation"] for r in rows] == [
        "serial-csr", "serial-hll", "parallel-csr", "parallel-csr", "parallel-hll", "parallel-hll",
    ]
    assert [r["workers"] for r in rows] == ["", "", "1", "2", "1", "2"]
    assert all(r["matrix"] == "example.mtx" and r["nnz"] == "6" for r in rows)


def test_cli_missing_directory(tmp_path):
    assert main([str(tmp_path / "nope"), "--no-gpu", "-q"]) == 1


def test_cli_bad_threads(tmp_path):
    with pytest.raises(SystemExit) as exc:
        main([str(tmp_path), "-t", "0"])
    assert exc.value.code == 2


class FailingLaunch:
    def __getitem__(self, grid):
        def launch(*args, **kwargs):
            raise OutOfResources(65536, 49152, "shared memory")
        return launch


def test_gpu_launch_failure_does_not_end_the_run(tmp_path, monkeypatch, caplog):
    matrices = tmp_path / "matrices"
    matrices.mkdir()
    write_matrix(matrices, "a.mtx", example_dense())
    write_matrix(matrices, "b.mtx", sp.random(30, 20, density=0.2, random_state=3))

    monkeypatch.setattr(benchmark.gpu, "gpu_available", lambda: True)
    monkeypatch.setattr(benchmark.gpu, "_device", lambda device: torch.device("cpu"))
    monkeypatch.setattr(benchmark.gpu, "_csr_row_kernel", FailingLaunch())
    monkeypatch.setattr(benchmark.gpu, "_hll_row_kernel", FailingLaunch())

    with caplog.at_level("ERROR", logger="spmvbench.benchmark"):
        run = run_directory(config_for(tmp_path, use_gpu=True))

    assert list(run.errors) == ["a.mtx", "b.mtx"]
    assert all(len(errs) == 2 for errs in run.errors.values())
    assert {r.matrix for r in run.log} == {"a.mtx", "b.mtx"}
    assert all(r.kind not in (ComputationKind.GPU_CSR, ComputationKind.GPU_HLL) for r in run.log)
    failures = [r for r in caplog.records if r.levelname == "ERROR"]
    assert len(failures) == 4
    assert all(r.exc_info is not None for r in failures)


def test_skipped_matrix_is_logged_with_traceback(tmp_path, monkeypatch, caplog):
    matrices = tmp_path / "matrices"
    matrices.mkdir()
    write_matrix(matrices, "bad.mtx", np.eye(3))

    read = benchmark.read_matrix_market

    def read_with_bad_row(path):
        coo = read(path)
        coo.rows[0] = 7
        return coo

    monkeypatch.setattr(benchmark, "read_matrix_market", read_with_bad_row)
    with caplog.at_level("ERROR", logger="spmvbench.benchmark"):
        run = run_directory(config_for(tmp_path))

    assert list(run.failed) == ["bad.mtx"]
    [record] = [r for r in caplog.records if r.levelname == "ERROR"]
    assert "Skipping bad.mtx" in record.getMessage()
    assert record.exc_info is not None


def test_run_directory_exports_each_matrix_as_it_finishes(tmp_path):
    matrices = tmp_path / "matrices"
    matrices.mkdir()
    write_matrix(matrices, "a.mtx", example_dense())
    write_matrix(matrices, "b.mtx", np.eye(5))

    batches = []
    run = run_directory(config_for(tmp_path), export=batches.append)

    per_matrix = 2 + 2 * len(WORKERS)
    assert [[r.matrix for r in batch] for batch in batches] == [
        ["a.mtx"] * per_matrix, ["b.mtx"] * per_matrix,
    ]
    assert run.exported == 2 * per_matrix
    assert len(run.log) == 0


def test_cli_keeps_finished_matrices_when_a_later_file_is_unreadable(tmp_path):
    matrices = tmp_path / "matrices"
    matrices.mkdir()
    write_matrix(matrices, "a_good.mtx", example_dense())
    (matrices / "b_junk.mtx").write_text("this is not a matrix\n")
    out = tmp_path / "perf.csv"

    code = main([str(matrices), "-o", str(out), "-H", "2", "-r", "2", "-t", "1,2", "--no-gpu", "-q"])
    assert code == 1

    with open(out, newline="") as f:
        rows = list(csv.DictReader(f))
    assert len(rows) == 6
    assert {r["matrix"] for r in rows} == {"a_good.mtx"}


def test_cli_empty_directory_writes_header_only(tmp_path):
    matrices = tmp_path / "matrices"
    matrices.mkdir()
    out = tmp_path / "perf.csv"

    assert main([str(matrices), "-o", str(out), "--no-gpu", "-q"]) == 0
    assert out.read_text().strip() == ",".join(CSV_FIELDS)


def test_cli_unwritable_output(tmp_path):
    matrices = tmp_path / "matrices"
    matrices.mkdir()
    write_matrix(matrices, "example.mtx", example_dense())
    blocker = tmp_path / "blocker"
    blocker.write_text("")

    code = main([str(matrices), "-o", str(blocker / "perf.csv"), "-r", "1", "-t", "1",
                 "--no-gpu", "-q"])
    assert code == 1
