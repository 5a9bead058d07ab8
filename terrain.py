"""
Heightfield System for the Terrain Renderer
Holds the normalized elevation grid, fills it from raw files, images or
fractal noise, and answers continuous height and normal queries.
"""

import numpy as np
from PIL import Image


class PerlinNoise:
    """Deterministic 2D gradient noise backed by a per-instance permutation table."""

    def __init__(self, seed=None):
        # Own random source so that noise instances never share global state
        self.rng = np.random.RandomState(seed)

        # Create permutation table, doubled so corner lookups never wrap
        perm = np.arange(256, dtype=np.int32)
        self.rng.shuffle(perm)
        self.perm = np.concatenate([perm, perm]).astype(np.int32)
        self.perm.setflags(write=False)

    def _fade(self, t):
        """Quintic interpolation curve for smooth transitions."""
        return t * t * t * (t * (t * 6 - 15) + 10)

    def _lerp(self, a, b, t):
        """Linear interpolation between values."""
        return a + t * (b - a)

    def _grad(self, hash_val, x, z):
        """Pick one of four gradients from the low two bits of the hash."""
        h = hash_val & 3
        u = np.where(h < 2, x, z)
        v = np.where(h < 2, z, x)
        return np.where(h & 1, -u, u) + np.where(h & 2, -v, v)

    def noise2d(self, x, z):
        """Generate 2D noise at (x, z). Accepts scalars or numpy arrays."""
        x = np.asarray(x, dtype=np.float64)
        z = np.asarray(z, dtype=np.float64)

        # Integer cell coordinates
        X = np.floor(x).astype(np.int32) & 255
        Z = np.floor(z).astype(np.int32) & 255

        # Fractional coordinates
        xf = x - np.floor(x)
        zf = z - np.floor(z)

        # Compute fade curves
        u = self._fade(xf)
        v = self._fade(zf)

        # Hash cell corners
        A = self.perm[X] + Z
        B = self.perm[X + 1] + Z

        g00 = self._grad(self.perm[A], xf, zf)
        g10 = self._grad(self.perm[B], xf - 1, zf)
        g01 = self._grad(self.perm[A + 1], xf, zf - 1)
        g11 = self._grad(self.perm[B + 1], xf - 1, zf - 1)

        # Interpolate along x, then along z
        ix0 = self._lerp(g00, g10, u)
        ix1 = self._lerp(g01, g11, u)
        result = self._lerp(ix0, ix1, v)

        if result.ndim == 0:
            return float(result)
        return result

    def fractal(self, x, z, octaves=6, frequency=1.0, persistence=0.5, lacunarity=2.0):
        """Generate fractal noise by summing multiple octaves."""
        total = 0.0
        amplitude = 1.0
        max_value = 0.0

        # Sum multiple noise octaves
        for _ in range(octaves):
            total = total + self.noise2d(np.multiply(x, frequency), np.multiply(z, frequency)) * amplitude
            max_value += amplitude
            amplitude *= persistence
            frequency *= lacunarity

        # Without octaves there is no amplitude to normalize by
        if max_value == 0.0:
            if np.ndim(x) or np.ndim(z):
                return np.zeros(np.broadcast(x, z).shape)
            return 0.0

        # Normalize the result
        return total / max_value


class Heightfield:
    """Normalized elevation grid mapped onto a square terrain footprint."""

    RENORMALIZE_EPSILON = 0.001

    def __init__(self, terrain_size=512.0, min_height=0.0, max_height=150.0, seed=None, noise=None):
        """Initialize an empty heightfield.

        Args:
            terrain_size: Edge length of the terrain footprint in world units
            min_height: World height of a normalized sample of 0
            max_height: World height of a normalized sample of 1
            seed: Seed for the noise permutation table (None = OS entropy)
            noise: Existing PerlinNoise instance to use instead of seeding a new one
        """
        self._terrain_size = float(terrain_size)
        self._min_height = float(min_height)
        self._max_height = float(max_height)

        self.noise = noise if noise is not None else PerlinNoise(seed=seed)

        self._width = 0
        self._height = 0
        self._samples = np.zeros((0, 0), dtype=np.float32)

    @property
    def width(self):
        return self._width

    @property
    def height(self):
        return self._height

    @property
    def terrain_size(self):
        return self._terrain_size

    @property
    def min_height(self):
        return self._min_height

    @property
    def max_height(self):
        return self._max_height

    @property
    def samples(self):
        """Read-only view of the (height, width) grid of normalized samples."""
        view = self._samples.view()
        view.setflags(write=False)
        return view

    def _set_samples(self, samples):
        self._samples = np.ascontiguousarray(samples, dtype=np.float32)
        self._height, self._width = self._samples.shape

    def load_raw(self, path, width, height, bits_per_sample=16):
        """Load a headerless row-major heightmap of unsigned 8 or 16 bit samples.

        Returns False if the file cannot be opened. A short file leaves the
        trailing samples at zero.
        """
        if bits_per_sample == 16:
            dtype = np.dtype('<u2')
            max_value = 65535.0
        elif bits_per_sample == 8:
            dtype = np.dtype('u1')
            max_value = 255.0
        else:
            raise ValueError(f"Unsupported sample width: {bits_per_sample} bits")

        count = int(width) * int(height)

        try:
            with open(path, 'rb') as f:
                data = f.read(count * dtype.itemsize)
        except OSError as e:
            print(f"Error loading heightmap {path}: {e}")
            return False

        # Drop a dangling half sample at the end of a truncated 16 bit file
        usable = len(data) - (len(data) % dtype.itemsize)
        raw = np.frombuffer(data[:usable], dtype=dtype)

        samples = np.zeros(count, dtype=np.float32)
        samples[:raw.size] = raw / max_value

        self._set_samples(samples.reshape(int(height), int(width)))
        return True

    def load_image(self, path, noise_scale=4.0):
        """Size the grid from an image file and fill it with single-octave noise.

        Only the image dimensions are used; the pixel data is ignored.
        Returns False if the image cannot be opened.
        """
        try:
            with Image.open(path) as img:
                width, height = img.size
        except OSError as e:
            print(f"Error loading heightmap image {path}: {e}")
            return False

        u = np.arange(width, dtype=np.float64) / width
        v = np.arange(height, dtype=np.float64) / height
        uu, vv = np.meshgrid(u, v)

        n = self.noise.noise2d(uu * noise_scale, vv * noise_scale)
        self._set_samples(n * 0.5 + 0.5)
        return True

    def generate(self, width, height, frequency=4.0, octaves=6):
        """Fill the grid with fBm noise renormalized to span [0, 1]."""
        width = int(width)
        height = int(height)

        nx = np.arange(width, dtype=np.float64) / width
        nz = np.arange(height, dtype=np.float64) / height
        xx, zz = np.meshgrid(nx, nz)

        # Zero octaves yield a flat 0.5 grid
        total = self.noise.fractal(xx, zz, octaves=octaves, frequency=float(frequency))
        values = (total + 1.0) * 0.5

        # Observed range starts from an inverted [1, 0] window
        hi = max(0.0, float(values.max())) if values.size else 0.0
        lo = min(1.0, float(values.min())) if values.size else 1.0

        value_range = hi - lo
        if value_range > self.RENORMALIZE_EPSILON:
            values = (values - lo) / value_range

        self._set_samples(values)
        return True

    def _sample(self, ix, iz):
        ix = np.clip(ix, 0, self._width - 1)
        iz = np.clip(iz, 0, self._height - 1)
        return self._samples[iz, ix].astype(np.float64)

    def get_heights(self, xs, zs):
        """Vectorized bilinear height lookup at world positions."""
        xs = np.asarray(xs, dtype=np.float64)
        zs = np.asarray(zs, dtype=np.float64)

        if self._samples.size == 0:
            return np.zeros(np.broadcast(xs, zs).shape)

        u = (xs / self._terrain_size + 0.5) * self._width
        v = (zs / self._terrain_size + 0.5) * self._height

        x0 = np.floor(u).astype(np.int64)
        z0 = np.floor(v).astype(np.int64)

        fx = u - x0
        fz = v - z0

        h00 = self._sample(x0, z0)
        h10 = self._sample(x0 + 1, z0)
        h01 = self._sample(x0, z0 + 1)
        h11 = self._sample(x0 + 1, z0 + 1)

        hx0 = h00 + (h10 - h00) * fx
        hx1 = h01 + (h11 - h01) * fx
        h = hx0 + (hx1 - hx0) * fz

        return self._min_height + h * (self._max_height - self._min_height)

    def get_height(self, x, z):
        """Get interpolated terrain height at a world position."""
        return float(self.get_heights(x, z))

    def get_normal(self, x, z):
        """Calculate terrain normal at a world position using central differences."""
        step = self._terrain_size / self._width if self._width else 1.0

        h_left = self.get_height(x - step, z)
        h_right = self.get_height(x + step, z)
        h_down = self.get_height(x, z - step)
        h_up = self.get_height(x, z + step)

        normal = np.array([h_left - h_right, 2.0 * step, h_down - h_up])
        return normal / np.linalg.norm(normal)

    def compute_normal_map(self):
        """Per-sample normals using the same stencil as get_normal, clamped at the edges."""
        if self._samples.size == 0:
            return np.zeros((0, 0, 3), dtype=np.float32)

        step = self._terrain_size / self._width
        heights = self._min_height + self._samples.astype(np.float64) * (self._max_height - self._min_height)

        # Pad by repeating the border so edge stencils clamp like _sample does
        padded = np.pad(heights, 1, mode='edge')
        h_left = padded[1:-1, :-2]
        h_right = padded[1:-1, 2:]
        h_down = padded[:-2, 1:-1]
        h_up = padded[2:, 1:-1]

        normals = np.empty(heights.shape + (3,), dtype=np.float64)
        normals[..., 0] = h_left - h_right
        normals[..., 1] = 2.0 * step
        normals[..., 2] = h_down - h_up
        normals /= np.linalg.norm(normals, axis=-1, keepdims=True)

        return normals.astype(np.float32)
