"""Tests for the block convolution engine."""

import numpy as np
import pytest

from sonar_module.core import ProcessingConfig
from sonar_module.dsp import (
    BlockConvolver,
    KernelDomain,
    MissingKernelError,
    convolution_size,
)

SAMPLE_RATE = 80e3


def make_tone(n_points: int, frequency: float = 5e3) -> np.ndarray:
    """Complex tone at a baseband frequency."""
    t = np.arange(n_points) / SAMPLE_RATE
    return np.exp(2j * np.pi * frequency * t).astype(np.complex64)


def make_chirp(n_points: int, bandwidth: float = 20e3) -> np.ndarray:
    """Linear FM sweep centered on baseband DC."""
    t = np.arange(n_points) / SAMPLE_RATE
    duration = n_points / SAMPLE_RATE
    phase = 2 * np.pi * (-bandwidth / 2) * t + np.pi * bandwidth * t**2 / duration
    return np.exp(1j * phase).astype(np.complex64)


def embed(signal: np.ndarray, position: int, n_points: int) -> np.ndarray:
    """Place a signal into a zero buffer."""
    data = np.zeros(n_points, dtype=np.complex64)
    data[position : position + len(signal)] = signal
    return data


@pytest.fixture
def convolver():
    """Convolver running on two worker threads."""
    conv = BlockConvolver(ProcessingConfig(max_workers=2, min_parallel_items=1))
    yield conv
    conv.close()


class TestConvolutionSize:
    """Test transform size selection."""

    def test_doubles_and_rounds(self):
        """Test size is allowed_size of twice the kernel length."""
        assert convolution_size(16) == 32
        assert convolution_size(80) == 160
        assert convolution_size(100) == 256


class TestKernelRegistration:
    """Test indexed kernel registration."""

    def test_register_time_kernel(self, convolver):
        """Test time kernel 0 fixes the transform size."""
        assert convolver.fft_size == 0
        assert convolver.register_kernel(0, make_tone(80), 80)
        assert convolver.fft_size == 160
        assert convolver.has_kernel(0)

        kernel = convolver.kernels[0]
        assert kernel.fft_size == 160
        assert kernel.n_points == 80
        assert kernel.domain == KernelDomain.TIME

    def test_time_kernel_is_conjugate_spectrum(self, convolver):
        """Test stored spectrum is the conjugate FFT of the padded image."""
        image = make_chirp(16)
        convolver.register_kernel(0, image, 16)

        expected = np.conj(np.fft.fft(image, 32))
        np.testing.assert_allclose(convolver.kernels[0].spectrum, expected, atol=1e-4)

    def test_nonzero_index_requires_kernel_zero(self, convolver):
        """Test kernels other than 0 need the size established first."""
        assert not convolver.register_kernel(1, make_tone(16), 16)
        assert not convolver.has_kernel(1)

    def test_kernel_zero_clears_others(self, convolver):
        """Test re-registering index 0 clears all other kernels."""
        convolver.register_kernel(0, make_tone(16), 16)
        assert convolver.register_kernel(1, make_tone(16), 16)
        assert convolver.register_kernel(7, make_tone(8), 8)

        assert convolver.register_kernel(0, make_tone(40), 40)
        assert set(convolver.kernels) == {0}
        assert convolver.fft_size == 96

    def test_time_kernel_must_fit(self, convolver):
        """Test non-zero time kernels must fit the shared size."""
        convolver.register_kernel(0, make_tone(16), 16)
        assert convolver.register_kernel(1, make_tone(16), 16)
        assert not convolver.register_kernel(2, make_tone(17), 17)

    def test_frequency_kernel_size(self, convolver):
        """Test frequency kernels must match the shared size exactly."""
        assert convolver.register_kernel(
            0, np.ones(64, dtype=np.complex64), 64, KernelDomain.FREQUENCY
        )
        assert convolver.fft_size == 64
        assert convolver.register_kernel(
            1, np.ones(64, dtype=np.complex64), 64, KernelDomain.FREQUENCY
        )
        assert not convolver.register_kernel(
            2, np.ones(32, dtype=np.complex64), 32, KernelDomain.FREQUENCY
        )
        assert not convolver.has_kernel(2)

    def test_frequency_kernel_zero_needs_table_size(self, convolver):
        """Test frequency kernel 0 length must be a transform size."""
        assert not convolver.register_kernel(
            0, np.ones(100, dtype=np.complex64), 100, KernelDomain.FREQUENCY
        )
        assert convolver.fft_size == 0

    def test_short_image(self, convolver):
        """Test images shorter than n_points are rejected."""
        assert not convolver.register_kernel(0, make_tone(10), 20)
        assert not convolver.register_kernel(0, make_tone(10), 0)

    def test_negative_index(self, convolver):
        """Test negative indices are rejected."""
        assert not convolver.register_kernel(-1, make_tone(16), 16)

    def test_none_clears_index(self, convolver):
        """Test None image removes a kernel."""
        convolver.register_kernel(0, make_tone(16), 16)
        convolver.register_kernel(3, make_tone(16), 16)

        assert convolver.register_kernel(3, None)
        assert not convolver.has_kernel(3)
        assert convolver.has_kernel(0)

        assert convolver.register_kernel(0, None)
        assert convolver.kernels == {}
        assert convolver.fft_size == 0

    def test_oversized_kernel(self, convolver):
        """Test kernels beyond the size table are rejected."""
        huge = np.zeros(600000, dtype=np.complex64)
        assert not convolver.register_kernel(0, huge, len(huge))


class TestConvolve:
    """Test in-place block convolution."""

    def test_impulse_reproduces_kernel(self, convolver):
        """Test an impulse returns the time-reversed conjugate kernel."""
        n = 16
        image = (np.exp(0.3j * np.arange(n)) * (np.arange(n) + 1)).astype(np.complex64)
        convolver.register_kernel(0, image, n)

        data = np.zeros(100, dtype=np.complex64)
        data[50] = 1.0
        assert convolver.convolve(0, data, 100, scale=n)

        expected = np.zeros(100, dtype=np.complex64)
        for k in range(n):
            expected[50 - k] = np.conj(image[k])
        np.testing.assert_allclose(data, expected, atol=1e-3)

    def test_tone_triangular_envelope(self, convolver):
        """Test a matched tone gives a triangle of width twice the kernel."""
        n = 64
        tone = make_tone(n)
        convolver.register_kernel(0, tone, n)

        data = embed(tone, 200, 512)
        assert convolver.convolve(0, data, 512)

        envelope = np.abs(data)
        assert np.argmax(envelope) == 200
        assert envelope[200] == pytest.approx(1.0, abs=1e-3)
        for lag in (16, 32, 48, 63):
            expected = (n - lag) / n
            assert envelope[200 + lag] == pytest.approx(expected, abs=1e-3)
            assert envelope[200 - lag] == pytest.approx(expected, abs=1e-3)
        assert np.max(envelope[: 200 - n + 1]) < 1e-3
        assert np.max(envelope[200 + n :]) < 1e-3

    def test_chirp_compression(self, convolver):
        """Test a matched chirp compresses into a narrow peak."""
        chirp = make_chirp(80)
        convolver.register_kernel(0, chirp, 80)

        data = embed(chirp, 300, 1024)
        assert convolver.convolve(0, data, 1024)

        envelope = np.abs(data)
        assert np.argmax(envelope) == 300
        assert envelope[300] == pytest.approx(1.0, abs=1e-3)
        sidelobes = np.concatenate([envelope[:296], envelope[305:]])
        assert np.max(sidelobes) < 0.35

    def test_scale(self, convolver):
        """Test output is multiplied by scale."""
        tone = make_tone(32)
        convolver.register_kernel(0, tone, 32)

        data = embed(tone, 100, 256)
        convolver.convolve(0, data, 256, scale=4.0)
        assert np.max(np.abs(data)) == pytest.approx(4.0, abs=1e-2)

    def test_missing_kernel(self, convolver):
        """Test missing kernels leave data untouched."""
        convolver.register_kernel(0, make_tone(16), 16)
        data = make_tone(100)
        original = data.copy()

        assert not convolver.convolve(5, data, 100)
        np.testing.assert_array_equal(data, original)

    def test_short_data(self, convolver):
        """Test data shorter than n_points is rejected."""
        convolver.register_kernel(0, make_tone(16), 16)
        assert not convolver.convolve(0, make_tone(50), 100)
        assert not convolver.convolve(0, None, 100)

    def test_parallel_matches_inline(self):
        """Test worker count does not change results."""
        chirp = make_chirp(40)
        data = embed(chirp, 123, 2000)

        results = []
        for workers in (1, 4):
            with BlockConvolver(ProcessingConfig(max_workers=workers, min_parallel_items=1)) as conv:
                conv.register_kernel(0, chirp, 40)
                out = data.copy()
                assert conv.convolve(0, out, 2000)
                results.append(out)

        np.testing.assert_allclose(results[0], results[1], atol=1e-5)

    def test_buffers_only_grow(self, convolver):
        """Test scratch capacity tracks the largest request."""
        convolver.register_kernel(0, make_tone(16), 16)
        assert convolver.capacity == 0

        convolver.convolve(0, make_tone(100), 100)
        # ceil(100 / 16) blocks of 32 samples
        assert convolver.capacity == 7 * 32

        convolver.convolve(0, make_tone(20), 20)
        assert convolver.capacity == 7 * 32

        convolver.convolve(0, make_tone(400), 400)
        assert convolver.capacity == 25 * 32


class TestTwoStage:
    """Test forward_blocks / apply_kernel access."""

    def test_forward_blocks_shape(self, convolver):
        """Test blocks cover the input with half-size steps."""
        convolver.register_kernel(0, make_tone(16), 16)
        spectra = convolver.forward_blocks(make_tone(100), 100)
        assert spectra.shape == (7, 32)

    def test_forward_blocks_without_kernel(self, convolver):
        """Test forward_blocks needs kernel 0."""
        assert convolver.forward_blocks(make_tone(100), 100) is None

    def test_apply_kernel_matches_convolve(self, convolver):
        """Test two-stage path equals in-place convolution."""
        chirp = make_chirp(32)
        convolver.register_kernel(0, chirp, 32)
        data = embed(chirp, 90, 300)

        spectra = convolver.forward_blocks(data, 300).copy()
        two_stage = convolver.apply_kernel(0, spectra, 300, scale=2.0)

        in_place = data.copy()
        convolver.convolve(0, in_place, 300, scale=2.0)
        np.testing.assert_allclose(two_stage, in_place, atol=1e-4)

    def test_apply_kernel_into_buffer(self, convolver):
        """Test apply_kernel writes into a supplied buffer."""
        convolver.register_kernel(0, make_tone(16), 16)
        spectra = convolver.forward_blocks(make_tone(64), 64).copy()

        out = np.zeros(80, dtype=np.complex64)
        result = convolver.apply_kernel(0, spectra, 64, out=out)
        assert result is out

    def test_apply_kernels_stack(self, convolver):
        """Test stacked application equals one kernel at a time."""
        convolver.register_kernel(0, make_tone(32), 32)
        convolver.register_kernel(1, make_chirp(32), 32)

        inputs = [embed(make_tone(32), 40, 200), embed(make_chirp(32), 70, 200)]
        spectra = np.stack([convolver.forward_blocks(x, 200).copy() for x in inputs])

        stacked = convolver.apply_kernels([0, 1], spectra, 200, scale=3.0)
        assert stacked.shape == (2, 200)
        for row, index in enumerate((0, 1)):
            single = convolver.apply_kernel(index, spectra[row], 200, scale=3.0)
            np.testing.assert_allclose(stacked[row], single, atol=1e-4)

    def test_apply_missing_kernel(self, convolver):
        """Test missing kernels raise in the two-stage path."""
        convolver.register_kernel(0, make_tone(16), 16)
        spectra = convolver.forward_blocks(make_tone(64), 64).copy()

        with pytest.raises(MissingKernelError):
            convolver.apply_kernel(2, spectra, 64)
        with pytest.raises(MissingKernelError):
            convolver.apply_kernels([0, 2], np.stack([spectra, spectra]), 64)
