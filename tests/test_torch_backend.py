# tests/test_torch_backend.py
import pytest
import torch
import torch.nn as nn
from torch.utils.data import DataLoader, TensorDataset

from learner.train import EventHandlers, Example, LossHistory, TrainConfig
from learner.train.torch_backend import (
    ExampleLoader,
    TorchOptimizer,
    build_trainer,
    no_grad_loss,
    value_with_gradient,
)


@pytest.fixture
def quiet_config() -> TrainConfig:
    return TrainConfig(
        epochs=40, lr=0.05, device="cpu",
        log_every_n_batches=0, verbose=False, early_stop_patience=0,
        lr_schedule="none",
    )


@pytest.fixture
def line_loader() -> DataLoader:
    x = torch.linspace(0, 1, 64).unsqueeze(1)
    y = 2 * x + 1
    return DataLoader(TensorDataset(x, y), batch_size=16, shuffle=False)


def test_value_with_gradient_matches_backward():
    torch.manual_seed(0)
    model = nn.Linear(2, 1)
    x, y = torch.randn(4, 2), torch.randn(4, 1)
    loss_fn = nn.MSELoss()

    loss, gradient = value_with_gradient(model, loss_fn, Example(x, y))

    model.zero_grad()
    reference = loss_fn(model(x), y)
    reference.backward()
    assert not loss.requires_grad
    assert torch.allclose(loss, reference.detach())
    assert len(gradient) == 2
    for g, p in zip(gradient, model.parameters()):
        assert torch.allclose(g, p.grad)


def test_value_with_gradient_averages_batched_loss():
    torch.manual_seed(0)
    model = nn.Linear(2, 1)
    x, y = torch.randn(4, 2), torch.randn(4, 1)

    loss, gradient = value_with_gradient(model, nn.MSELoss(reduction="none"), Example(x, y))
    _, mean_gradient = value_with_gradient(model, nn.MSELoss(), Example(x, y))

    assert loss.shape == (4, 1)
    for g, m in zip(gradient, mean_gradient):
        assert torch.allclose(g, m)


def test_no_grad_loss_builds_no_graph():
    model = nn.Linear(1, 1)
    loss = no_grad_loss(model, nn.MSELoss(), Example(torch.ones(2, 1), torch.zeros(2, 1)))
    assert not loss.requires_grad
    assert not model.training


def test_torch_optimizer_applies_gradient():
    model = nn.Linear(1, 1)
    before = [p.detach().clone() for p in model.parameters()]
    optimizer = TorchOptimizer(torch.optim.SGD(model.parameters(), lr=0.1))

    optimizer.update(model, tuple(torch.ones_like(p) for p in model.parameters()))

    for b, p in zip(before, model.parameters()):
        assert torch.allclose(p, b - 0.1)
        assert p.grad is None
    assert optimizer.lr == 0.1


def test_torch_optimizer_clips_gradient():
    model = nn.Linear(1, 1)
    optimizer = TorchOptimizer(torch.optim.SGD(model.parameters(), lr=0.1), grad_clip=1.0)
    optimizer.update(model, tuple(torch.full_like(p, 10.0) for p in model.parameters()))
    assert optimizer.last_grad_norm == pytest.approx((2 * 100.0) ** 0.5)


def test_torch_optimizer_rejects_mismatched_gradient():
    model = nn.Linear(1, 1)
    optimizer = TorchOptimizer(torch.optim.SGD(model.parameters(), lr=0.1))
    with pytest.raises(ValueError):
        optimizer.update(model, (torch.zeros(1),))


def test_example_loader_is_reiterable(line_loader):
    examples = ExampleLoader(line_loader)

    assert len(examples) == 4
    first = list(examples)
    second = list(examples)
    assert len(first) == len(second) == 4
    assert all(isinstance(e, Example) for e in first)
    assert first[0].data.shape == (16, 1)
    assert torch.equal(first[0].label, second[0].label)


def test_example_loader_rejects_unpaired_batches():
    with pytest.raises(ValueError):
        list(ExampleLoader([torch.zeros(3)]))


def test_build_trainer_fits_a_line(line_loader, quiet_config):
    history = LossHistory()
    trainer = build_trainer(
        nn.Linear(1, 1), line_loader, nn.MSELoss(), quiet_config,
        val_loader=line_loader, handlers=history,
    )
    trainer.fit(quiet_config.epochs)

    assert len(history.history["loss"]) == quiet_config.epochs
    assert history.history["loss"][-1] < history.history["loss"][0]
    assert isinstance(trainer.validation_loss, float)
    assert trainer.optimizer.lr == pytest.approx(0.05)
    assert trainer.current_epoch == quiet_config.epochs - 1


def test_build_trainer_installs_builtin_callbacks(line_loader):
    config = TrainConfig(device="cpu", log_every_n_batches=10, early_stop_patience=3, verbose=False)
    trainer = build_trainer(nn.Linear(1, 1), line_loader, nn.MSELoss(), config)

    assert trainer.handlers.new_loss is not None
    assert trainer.handlers.epoch_completion is not None
    assert trainer.handlers.optimizer_update_completion is not None
    assert trainer.handlers.batch_completion is None


def test_build_trainer_with_custom_optimizer(line_loader, quiet_config):
    model = nn.Linear(1, 1)
    sgd = torch.optim.SGD(model.parameters(), lr=0.2)
    trainer = build_trainer(model, line_loader, nn.MSELoss(), quiet_config, optimizer=sgd)
    trainer.fit(2)
    assert trainer.optimizer.optimizer is sgd


def test_step_schedule_decays_lr_across_fit(line_loader):
    config = TrainConfig(
        epochs=3, lr=0.05, device="cpu", log_every_n_batches=0, verbose=False,
        early_stop_patience=0, lr_schedule="step", step_lr_step_size=4, step_lr_gamma=0.5,
    )
    trainer = build_trainer(nn.Linear(1, 1), line_loader, nn.MSELoss(), config)
    trainer.fit(config.epochs)

    # 4 batches per epoch, one decay per epoch.
    assert trainer.optimizer.lr == pytest.approx(0.05 * 0.5 ** 3)


def test_cosine_schedule_decreases_every_epoch(line_loader):
    config = TrainConfig(
        epochs=4, lr=0.05, device="cpu", log_every_n_batches=0, verbose=False,
        early_stop_patience=0, lr_schedule="cosine",
    )
    lrs = []
    trainer = build_trainer(
        nn.Linear(1, 1), line_loader, nn.MSELoss(), config,
        handlers=EventHandlers(epoch_completion=lambda t: lrs.append(t.optimizer.lr)),
    )
    trainer.fit(config.epochs)

    assert len(lrs) == 4
    assert all(later < earlier for earlier, later in zip(lrs, lrs[1:]))
    assert lrs[-1] == pytest.approx(0.0, abs=1e-9)


def test_warmup_ramps_lr_up(line_loader):
    config = TrainConfig(
        epochs=2, lr=0.05, device="cpu", log_every_n_batches=0, verbose=False,
        early_stop_patience=0, lr_schedule="none", warmup_steps=4,
    )
    lrs = []
    trainer = build_trainer(
        nn.Linear(1, 1), line_loader, nn.MSELoss(), config,
        handlers=EventHandlers(batch_start=lambda t: lrs.append(t.optimizer.lr)),
    )
    trainer.fit(config.epochs)

    assert lrs[0] == pytest.approx(0.05 / 5)
    assert lrs[:5] == sorted(lrs[:5])
    assert lrs[-1] == pytest.approx(0.05)


def test_no_schedule_keeps_lr(line_loader, quiet_config):
    trainer = build_trainer(nn.Linear(1, 1), line_loader, nn.MSELoss(), quiet_config)
    trainer.fit(2)
    assert trainer.optimizer.lr == pytest.approx(0.05)
    assert trainer.handlers.optimizer_update_completion is None
